"""Boundary services: media player control and calendar lookup."""
