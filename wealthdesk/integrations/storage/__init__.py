"""Blob storage integration."""
