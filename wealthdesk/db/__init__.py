"""Database engine and Redis client."""
