"""Metadata mirror, override store and archive index."""
