"""Clients for external collaborators: extraction, catalog, renderer, blob storage."""
