"""Embedding model management."""
