"""Persistence collaborators and audio archive."""
