"""Embedded JSON-LD context cache.

Linked-data proofs are computed over URDNA2015-canonicalized documents, and
canonicalization needs the vocabulary documents the capability's
``@context`` points at. The two security vocabularies are shipped with the
package and parsed once, so signing and verification never hit the network
for them.

The cache is an explicitly constructed, read-only object: build it at service
startup and hand it to the factory and the authorizer.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from importlib import resources
from types import MappingProxyType
from typing import Any

from pyld import jsonld

from .defaults import REMOTE_CONTEXT_TIMEOUT_SECONDS, SECURITY_V1_URL, SECURITY_V2_URL
from .errors import InitializationError

logger = logging.getLogger(__name__)

# Vocabulary URI -> embedded file under vaultzcap/contexts/
EMBEDDED_CONTEXTS = {
    SECURITY_V1_URL: "security-v1.jsonld",
    SECURITY_V2_URL: "security-v2.jsonld",
}

DocumentLoader = Callable[..., dict[str, Any]]


def _read_embedded(filename: str) -> str:
    return (resources.files("vaultzcap") / "contexts" / filename).read_text(encoding="utf-8")


class LDContextCache:
    """Fixed, in-memory mapping of vocabulary URI to JSON-LD document.

    No eviction and no expiry: the set is decided at construction and never
    changes, so concurrent readers need no locking.
    """

    def __init__(self, sources: dict[str, str] | None = None) -> None:
        """Parse the embedded vocabularies.

        Args:
            sources: Optional URI -> raw JSON text overrides (tests, custom
                deployments). Defaults to the documents shipped with the package.

        Raises:
            InitializationError: If any document cannot be read or parsed.
        """
        documents: dict[str, dict[str, Any]] = {}

        for url, filename in EMBEDDED_CONTEXTS.items():
            try:
                raw = sources[url] if sources and url in sources else _read_embedded(filename)
                document = json.loads(raw)
            except (OSError, ValueError) as e:
                raise InitializationError(f"failed to read cached jsonld context {url}: {e}") from e

            if not isinstance(document, dict) or "@context" not in document:
                raise InitializationError(f"cached jsonld context {url} has no @context")

            documents[url] = document

        self._documents = MappingProxyType(documents)
        logger.debug(f"Loaded {len(documents)} cached JSON-LD contexts")

    def lookup(self, url: str) -> dict[str, Any] | None:
        """Return the cached document for ``url``, or None when not cached."""
        return self._documents.get(url)

    @property
    def urls(self) -> tuple[str, ...]:
        return tuple(self._documents)

    def __contains__(self, url: object) -> bool:
        return url in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def document_loader(self, fallback: DocumentLoader | None = None) -> DocumentLoader:
        """Build a PyLD document loader backed by this cache.

        Cached vocabularies are answered from memory. Anything else goes to
        ``fallback``, which defaults to a ``requests``-based remote loader.
        """
        remote = fallback

        def load(url: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
            nonlocal remote
            document = self._documents.get(url)
            if document is not None:
                return {
                    "contentType": "application/ld+json",
                    "contextUrl": None,
                    "documentUrl": url,
                    "document": document,
                }

            logger.info(f"JSON-LD context {url} not cached, fetching remotely")
            if remote is None:
                remote = jsonld.requests_document_loader(timeout=REMOTE_CONTEXT_TIMEOUT_SECONDS)
            return remote(url, options or {})

        return load
