"""Shared helpers for the board server."""
