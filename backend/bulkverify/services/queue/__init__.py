"""Verification queue services package."""
