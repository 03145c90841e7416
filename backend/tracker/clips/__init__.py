"""Clip-to-GIF conversion pipeline."""
