"""Locate merchant records across messy spreadsheet exports and write edits back."""

__version__ = "0.1.0"
