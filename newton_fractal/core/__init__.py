"""Viewport, parameters and the Newton iteration."""
