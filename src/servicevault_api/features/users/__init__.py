"""User records."""
