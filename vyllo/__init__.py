"""Vyllo: AI sticker & apparel print designer with virtual try-on."""

__version__ = "0.1.0"
