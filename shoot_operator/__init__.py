"""Shoot operator: shoot health conditions and shoot cleanup on deletion."""

__version__ = "1.0.0"
