"""Utility modules for the document scanning service."""
