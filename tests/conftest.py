"""Shared pytest fixtures for the ragpipe test suite."""

from __future__ import annotations

import hashlib
import math
import struct
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from tokenizers import Tokenizer
from tokenizers.models import WordLevel
from tokenizers.pre_tokenizers import WhitespaceSplit

from ragpipe.interfaces.embedding_provider import IEmbeddingProvider
from ragpipe.interfaces.llm_provider import ILLMProvider
from ragpipe.interfaces.vector_store_provider import IVectorStoreProvider
from ragpipe.models.rag import SearchHit, VectorRecord
from ragpipe.services.ingestion.tokenizer import TokenCounter
from ragpipe.utils.errors import EmbeddingError, StoreError

EMBEDDING_DIM = 8


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


def make_whitespace_counter() -> TokenCounter:
    """A real ``tokenizers`` pipeline where every whitespace-separated word is one token."""
    tokenizer = Tokenizer(WordLevel(vocab={"[UNK]": 0}, unk_token="[UNK]"))
    tokenizer.pre_tokenizer = WhitespaceSplit()
    return TokenCounter(tokenizer, name="whitespace")


@pytest.fixture
def token_counter() -> TokenCounter:
    return make_whitespace_counter()


# ---------------------------------------------------------------------------
# Embedding provider
# ---------------------------------------------------------------------------


def _hash_to_vector(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic pseudo-random vector derived from SHA-256 of *text*."""
    raw = hashlib.sha256(text.encode("utf-8")).digest()
    while len(raw) < dim * 4:
        raw += hashlib.sha256(raw).digest()
    values = struct.unpack(f"<{dim}I", raw[: dim * 4])
    return [(v / 0xFFFFFFFF) * 2.0 - 1.0 for v in values]


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic in-memory embedding provider.

    Texts mentioning a configured topic word embed onto that topic's axis
    (several topics add up); other texts get a hash-derived vector.  The
    first *failures* calls to :meth:`embed` raise :class:`EmbeddingError`.
    """

    def __init__(
        self,
        dim: int = EMBEDDING_DIM,
        topics: dict[str, int] | None = None,
        failures: int = 0,
    ) -> None:
        self.dim = dim
        self.topics = topics or {}
        self.failures = failures
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        lowered = text.lower()
        matched = [axis for word, axis in self.topics.items() if word in lowered]
        if not matched:
            return _hash_to_vector(text, self.dim)
        vector = [0.0] * self.dim
        for axis in matched:
            vector[axis] += 1.0
        return vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.failures > 0:
            self.failures -= 1
            raise EmbeddingError(message="simulated outage", provider_name="mock-embedding")
        return [self.vector_for(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return self.dim

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


@pytest.fixture
def mock_embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


# ---------------------------------------------------------------------------
# Vector store
# ---------------------------------------------------------------------------


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class MockVectorStore(IVectorStoreProvider):
    """Dict-backed vector store with brute-force cosine search."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, VectorRecord]] = {}
        self.dimensions: dict[str, int] = {}
        self.ensure_calls = 0
        self.fail_upsert = False

    async def ensure_collection(self, name: str, dimension: int) -> None:
        self.ensure_calls += 1
        if name in self.dimensions and self.dimensions[name] != dimension:
            raise StoreError(message="dimension mismatch", provider_name="mock-store")
        self.dimensions.setdefault(name, dimension)
        self.collections.setdefault(name, {})

    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        if self.fail_upsert:
            raise StoreError(message="simulated write failure", provider_name="mock-store")
        target = self.collections[collection]
        for record in records:
            target[record.id] = record
        return len(records)

    async def search(
        self, collection: str, query_vector: list[float], top_k: int
    ) -> list[SearchHit]:
        records = self.collections.get(collection, {}).values()
        hits = [
            SearchHit(
                chunk_id=r.id,
                text=r.text,
                score=_cosine(query_vector, r.embedding),
                metadata=dict(r.metadata),
            )
            for r in records
        ]
        hits.sort(key=lambda h: -h.score)
        return hits[:top_k]

    async def get_record_ids(self, collection: str, document_id: str) -> set[str]:
        return {
            r.id
            for r in self.collections.get(collection, {}).values()
            if r.metadata.get("document_id") == document_id
        }

    async def delete(self, collection: str, ids: list[str]) -> int:
        target = self.collections.get(collection, {})
        for record_id in ids:
            target.pop(record_id, None)
        return len(ids)

    async def count(self, collection: str, document_id: str | None = None) -> int:
        if document_id is not None:
            return len(await self.get_record_ids(collection, document_id))
        return len(self.collections.get(collection, {}))

    def get_provider_name(self) -> str:
        return "mock-store"

    def is_available(self) -> bool:
        return True


@pytest.fixture
def mock_vector_store() -> MockVectorStore:
    return MockVectorStore()


# ---------------------------------------------------------------------------
# Chat provider
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider whose complete() returns a fixed string.

    Override with ``mock_llm_provider.complete.return_value = "..."`` or
    ``.side_effect = [...]`` in individual tests.
    """
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.is_available.return_value = True
    mock.validate_credentials = AsyncMock(return_value=True)
    mock.complete = AsyncMock(return_value="A short summary.")
    return mock


# ---------------------------------------------------------------------------
# Source files
# ---------------------------------------------------------------------------


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    """Directory with three Markdown files; the second is not valid UTF-8."""
    root = tmp_path / "docs"
    root.mkdir()
    (root / "a_intro.md").write_text(
        "# Introduction\n\nCats purr softly. Cats nap all day.\n\n"
        "Dogs bark loudly. Dogs run in the park.\n",
        encoding="utf-8",
    )
    (root / "b_broken.md").write_bytes(b"# Broken\n\n\xff\xfe invalid bytes here.\n")
    (root / "c_setup.md").write_text(
        "# Setup\n\nInstall the package. Configure the key.\n",
        encoding="utf-8",
    )
    (root / "notes.txt").write_text("Not matched by the Markdown pattern.\n", encoding="utf-8")
    return root
