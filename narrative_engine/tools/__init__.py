"""Command line helpers for operating the narrative engine."""
