"""Banana Mart Image Studio - metered AI image transformations."""

__version__ = "0.1.0"
