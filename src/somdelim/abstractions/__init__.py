"""Shared abstractions."""
