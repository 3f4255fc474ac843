"""Shared platform services."""
