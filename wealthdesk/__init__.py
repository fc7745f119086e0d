"""Proposal illustration extraction, product matching and generation pipeline."""
