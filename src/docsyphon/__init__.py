"""Docsyphon: turns community chat history into reviewed documentation proposals."""

__version__ = "0.1.0"
