"""Clients for the pharmacy REST backend."""
