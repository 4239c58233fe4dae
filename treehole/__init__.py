"""Core models and services for an anonymous bulletin board, stored in SQLite."""

__version__ = "2.1.0"