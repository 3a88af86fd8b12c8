"""Lumina Stories: outline-driven, chapter-by-chapter story generation."""

__version__ = "0.1.0"
