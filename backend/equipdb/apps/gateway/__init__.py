"""Secure operation gateway: the only path from the presentation layer to the store."""
