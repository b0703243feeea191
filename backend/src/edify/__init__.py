"""Edify realtime support package."""
