"""Core utilities for the Edify backend."""
