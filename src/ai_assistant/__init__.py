"""Conversational automation assistant driving named endpoint values."""

__version__ = "0.1.0"
