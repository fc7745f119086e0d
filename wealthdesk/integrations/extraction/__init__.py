"""Extraction service integration."""
