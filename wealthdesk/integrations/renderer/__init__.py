"""Page renderer integration."""
