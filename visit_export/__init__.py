"""Retail visit spreadsheet export and attachment preview service."""

from .web import create_app

__all__ = ["create_app"]
__version__ = "0.1.0"
