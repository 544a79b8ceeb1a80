"""Discover content service application package."""
