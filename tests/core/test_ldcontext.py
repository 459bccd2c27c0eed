"""Tests for the embedded JSON-LD context cache."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from vaultzcap.errors import InitializationError
from vaultzcap.ldcontext import LDContextCache

SECURITY_V1 = "https://w3id.org/security/v1"
SECURITY_V2 = "https://w3id.org/security/v2"


class TestLDContextCache:
    """Test preloading and lookup."""

    def test_loads_both_vocabularies(self, contexts):
        assert len(contexts) == 2
        assert SECURITY_V1 in contexts
        assert SECURITY_V2 in contexts
        assert set(contexts.urls) == {SECURITY_V1, SECURITY_V2}

    def test_lookup_returns_context_document(self, contexts):
        v2 = contexts.lookup(SECURITY_V2)
        assert SECURITY_V1 in v2["@context"]
        terms = v2["@context"][1]
        assert "capabilityChain" in terms
        assert "invocationTarget" in terms

    def test_lookup_unknown_is_none(self, contexts):
        assert contexts.lookup("https://example.com/context") is None

    def test_mapping_is_read_only(self, contexts):
        with pytest.raises(TypeError):
            contexts._documents["https://example.com"] = {}

    def test_invalid_document_fails_initialization(self):
        with pytest.raises(InitializationError):
            LDContextCache(sources={SECURITY_V1: "{not json"})

    def test_document_without_context_fails_initialization(self):
        with pytest.raises(InitializationError, match="@context"):
            LDContextCache(sources={SECURITY_V2: '{"foo": 1}'})


class TestDocumentLoader:
    """Test the PyLD document loader backed by the cache."""

    def test_cached_documents_skip_fallback(self, contexts):
        fallback = MagicMock()
        loader = contexts.document_loader(fallback)

        remote = loader(SECURITY_V1, {})

        assert remote["documentUrl"] == SECURITY_V1
        assert remote["document"] is contexts.lookup(SECURITY_V1)
        fallback.assert_not_called()

    def test_unknown_documents_use_fallback(self, contexts):
        fallback = MagicMock(return_value={"document": {"@context": {}}})
        loader = contexts.document_loader(fallback)

        remote = loader("https://example.com/context", {})

        assert remote == {"document": {"@context": {}}}
        fallback.assert_called_once_with("https://example.com/context", {})
