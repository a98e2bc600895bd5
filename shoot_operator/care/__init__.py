"""Shoot care: health checks turning cluster observations into shoot conditions."""
