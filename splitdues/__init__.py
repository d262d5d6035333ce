"""Shared-expense tracking backend: who owes whom."""

__version__ = "0.1.0"
