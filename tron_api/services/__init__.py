"""API services."""
