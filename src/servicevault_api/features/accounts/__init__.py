"""Accounts and the account hierarchy."""
