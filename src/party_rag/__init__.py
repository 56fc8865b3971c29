"""Retrieval core for party programme chat: ingestion, embeddings, caching and context building."""

__version__ = "0.1.0"
