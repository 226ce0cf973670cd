"""Domain core: access control types and persistence models."""
