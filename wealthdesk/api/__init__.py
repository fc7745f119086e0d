"""HTTP API for the proposal pipeline."""
