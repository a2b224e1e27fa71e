"""Send documents to a running server's bulk ingestion endpoint."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

import requests

from ..errors import ProviderError
from ..models import Document

logger = logging.getLogger(__name__)


def push_documents(
    api_url: str,
    documents: Iterable[Document],
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 120.0,
) -> Dict[str, Any]:
    """POST ``documents`` to ``{api_url}/ingest/bulk`` and return its JSON reply."""

    payload = {
        "documents": [
            {"content": document.content, "metadata": document.metadata or None}
            for document in documents
        ]
    }
    http = session or requests.Session()
    endpoint = f"{api_url.rstrip('/')}/ingest/bulk"
    try:
        response = http.post(endpoint, json=payload, timeout=timeout)
    except requests.RequestException as exc:
        raise ProviderError(f"Ingestion API unreachable: {exc}") from exc
    if not response.ok:
        raise ProviderError(f"Ingestion API returned {response.status_code}: {response.text}")
    result = response.json()
    logger.info("Pushed %d documents to %s", len(payload["documents"]), endpoint)
    return result
