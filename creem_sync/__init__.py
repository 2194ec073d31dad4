"""Creem billing webhook receiver."""
