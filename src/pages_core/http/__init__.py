"""Clients for the external build backend and source host."""
