"""Hybrid document store: SQLite rows with vector and BM25 shadow indexes."""

__version__ = "0.1.0"
