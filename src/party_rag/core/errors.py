"""
Error Taxonomy and Global Error Handling

This module defines the exceptions raised across the retrieval core and the
application-wide exception handler for the HTTP surface.

Propagation Rules
-----------------
- ProviderError / StoreQueryError surface to single-party callers, and are
  narrowed to an absent per-party context in comparison mode.
- CacheError never leaves the cache layer; it is downgraded to a miss.
- IngestionStepError marks the document failed and is re-raised to the
  batch driver, which records it and moves on.
- ValidationError short-circuits before any I/O; the context builders turn
  it into an absent context.
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("rag.errors")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class PartyRagError(RuntimeError):
    """Base error for the retrieval core."""


class ProviderError(PartyRagError):
    """Raised when embedding generation fails."""


class StoreQueryError(PartyRagError):
    """Raised when a vector store query fails."""


class CacheError(PartyRagError):
    """Raised by the cache client; callers downgrade it to a miss."""


class ValidationError(PartyRagError):
    """Raised for unknown party codes or empty questions."""


class IngestionStepError(PartyRagError):
    """
    Raised when one step of a document ingestion fails.

    ``step`` names the failing stage; see ``STEPS``.
    """

    STEPS = ("lookup", "extract", "chunk", "embed", "persist")

    def __init__(self, step: str, message: str, document: Optional[str] = None) -> None:
        if step not in self.STEPS:
            raise ValueError(f"Unknown ingestion step: {step}")
        self.step = step
        self.document = document
        super().__init__(f"[{step}] {message}")


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Logs the full traceback internally and returns a generic 500 with no
    internal details.
    """
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
