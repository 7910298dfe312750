"""Tests for vector DB operations against a running Manticore."""

import os
import sys
import uuid
from pathlib import Path

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from vector.documents import VectorDocument
from vector.manticore_store import ManticoreStore

MANTICORE_URL = os.getenv("MANTICORE_URL", "http://localhost:9308")


@pytest.fixture
def vector_store():
    """Create a store on a throwaway table."""
    client = httpx.Client(timeout=5.0)
    try:
        client.get(MANTICORE_URL)
    except httpx.HTTPError as e:
        client.close()
        pytest.skip(f"Manticore not available: {e}")

    store = ManticoreStore(
        client,
        MANTICORE_URL,
        table=f"test_docs_{uuid.uuid4().hex[:8]}",
        field="embedding",
        dimensions=4,
    )
    store.setup()
    yield store
    store.drop()
    client.close()


def test_vector_add_and_query(vector_store):
    """Documents added to the table are found by a nearest-neighbour query."""
    first = VectorDocument(id=uuid.uuid4(), vector=[0.1, 0.2, 0.3, 0.4], metadata={"title": "Doc 1"})
    second = VectorDocument(id=uuid.uuid4(), vector=[0.9, 0.1, 0.0, 0.0], metadata={"title": "Doc 2"})
    vector_store.add([first, second])

    results = list(vector_store.query([0.1, 0.2, 0.3, 0.4], {"k": 2}))

    assert len(results) == 2
    assert results[0].id == first.id
    assert results[0].vector.to_list() == pytest.approx(first.vector.to_list())
    assert results[0].metadata == {"title": "Doc 1"}


def test_vector_remove(vector_store):
    """Removed documents no longer show up in queries."""
    document = VectorDocument(id=uuid.uuid4(), vector=[0.1, 0.2, 0.3, 0.4])
    vector_store.add([document])

    vector_store.remove(document.id)

    assert list(vector_store.query([0.1, 0.2, 0.3, 0.4])) == []
