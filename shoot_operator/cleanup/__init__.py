"""Shoot cleanup: staged deletion of everything users created inside a shoot."""
