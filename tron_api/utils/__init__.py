"""API utilities."""
