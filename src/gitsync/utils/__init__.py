"""Utility helpers for gitsync."""
