"""
RAG Package

Relevance classification, retrieval and context aggregation. Import
submodules directly; this package re-exports nothing so that the cache
and database layers can depend on ``rag.models`` without cycles.
"""
