"""Streaming chat relay with retrieval-augmented prompts and sentence-level speech."""

__version__ = "0.1.0"
