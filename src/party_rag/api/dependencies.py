from fastapi import Request

from ..cache.client import CacheClient
from ..rag.context import RagContextBuilder


def get_cache_client(request: Request) -> CacheClient:
    return request.app.state.cache


def get_context_builder(request: Request) -> RagContextBuilder:
    return request.app.state.context_builder


def get_started_at(request: Request) -> float:
    return request.app.state.started_at
