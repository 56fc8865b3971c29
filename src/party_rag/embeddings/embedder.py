"""
Embedding Client

Asynchronous client for the OpenAI embeddings API (or any compatible
provider). It is responsible for:

- Batching text inputs
- Translating transport, HTTP and payload failures into ProviderError
- Validating that every vector has the configured dimensionality

Batch calls are all-or-nothing: if any request fails, no embeddings are
returned. The client performs no caching and no retries; the retrieval
layer owns both concerns.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..cache.rag_cache import normalize_text
from ..config import settings
from ..core.errors import ProviderError

logger = logging.getLogger("rag.embedder")


class Embedder:
    """
    Asynchronous embedding generator for batches of text.

    Stateless and safe to reuse across concurrent requests.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize an Embedder.

        Parameters
        ----------
        api_key : Optional[str]
            Override for the API key. Defaults to settings.openai_api_key.

        model : Optional[str]
            Override for the embedding model. Defaults to settings.embedding_model.

        dimensions : Optional[int]
            Expected vector length. Defaults to settings.embedding_dimensions.

        base_url : Optional[str]
            Embeddings endpoint URL.

        timeout : Optional[float]
            HTTP timeout for each request.

        transport : Optional[httpx.AsyncBaseTransport]
            Custom transport, used by tests to stub the provider.
        """
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.base_url = base_url or settings.embedding_base_url
        self.timeout = timeout or settings.embedding_timeout_seconds
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(
        self,
        texts: Sequence[str],
        batch_size: Optional[int] = None,
    ) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Parameters
        ----------
        texts : Sequence[str]
            Input text strings.

        batch_size : Optional[int]
            Maximum inputs per request. Defaults to settings.embedding_batch_size.

        Returns
        -------
        List[List[float]]
            One embedding per input, in input order.

        Raises
        ------
        ProviderError
            If any batch fails or the response is malformed.
        """
        if not texts:
            return []

        batch_size = batch_size or settings.embedding_batch_size
        all_embeddings: List[List[float]] = []
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for start in range(0, len(texts), batch_size):
                batch = list(texts[start : start + batch_size])
                payload = {
                    "model": self.model,
                    "input": batch,
                }

                try:
                    response = await client.post(
                        self.base_url,
                        json=payload,
                        headers=headers,
                    )
                    response.raise_for_status()
                    data = response.json()
                except httpx.HTTPError as exc:
                    logger.error(
                        "Embedding request failed (%s): batch size=%d, error=%s",
                        type(exc).__name__,
                        len(batch),
                        str(exc),
                    )
                    raise ProviderError(
                        f"Embedding generation failed: {type(exc).__name__}"
                    ) from exc
                except ValueError as exc:
                    raise ProviderError("Embedding response was not valid JSON.") from exc

                embeddings = self._extract_embeddings(data)
                if len(embeddings) != len(batch):
                    raise ProviderError(
                        f"Embedding count mismatch: sent {len(batch)}, received {len(embeddings)}."
                    )
                all_embeddings.extend(embeddings)

        return all_embeddings

    async def embed_one(self, text: str) -> List[float]:
        """
        Embed a single text after normalizing it.

        Raises
        ------
        ProviderError
            If the text is empty after normalization or the request fails.
        """
        value = normalize_text(text)
        if not value:
            raise ProviderError("Cannot embed empty text.")
        embeddings = await self.embed([value])
        return embeddings[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _extract_embeddings(self, data: dict) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Records are re-ordered by ``index`` when present.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise ProviderError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise ProviderError("'data' field must be a list.")

        if all(isinstance(r, dict) and isinstance(r.get("index"), int) for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise ProviderError(
                    f"Malformed embedding record at index {index}."
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise ProviderError(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            if len(emb) != self.dimensions:
                raise ProviderError(
                    f"Embedding at index {index} has {len(emb)} dimensions, expected {self.dimensions}."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
