"""Service Vault access control API."""

__version__ = "0.4.0"
