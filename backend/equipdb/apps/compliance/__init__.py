"""Compliance tracking and scheduling."""
