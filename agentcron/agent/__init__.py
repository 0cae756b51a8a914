"""Bounded autonomous agent runs and their toolset."""
