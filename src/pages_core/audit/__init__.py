"""Collaborator access audits for site membership."""
