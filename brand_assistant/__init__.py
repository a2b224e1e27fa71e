"""Retrieval-augmented brand assistant with conversational lead capture."""

__version__ = "1.0.0"
