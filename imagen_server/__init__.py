"""Gemini Imagen generation server: prompts in, image files on disk out."""

__version__ = "1.3.0"
