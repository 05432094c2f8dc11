"""Catalog tables: subjects and learning paths."""
