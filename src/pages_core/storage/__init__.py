"""Persistence for builds, sites and membership."""
