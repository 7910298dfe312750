"""ManticoreSearch vector store over the HTTP API."""

import json
import os
import re
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union
from uuid import UUID

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vector.documents import Vector, VectorDocument
from vector.exceptions import InvalidConfiguration, RequestFailed

logger = structlog.get_logger(__name__)

# Manticore rejects very large bulk payloads, so deletes are sent in batches
REMOVE_CHUNK_SIZE = 1000

SIMILARITIES = ("cosine", "l2", "ip")
KNN_TYPES = ("hnsw",)

# Table and field names are interpolated into SQL
IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

QUERY_OK = re.compile(r"Query OK, \d+ rows? affected \([\d.]+ sec\)")


class SetupOptions(BaseModel):
    """Options accepted by ``ManticoreStore.setup``. There are none."""

    model_config = ConfigDict(extra="forbid")


class QueryOptions(BaseModel):
    """Options accepted by ``ManticoreStore.query``."""

    model_config = ConfigDict(extra="forbid")

    k: int = Field(10, gt=0, description="Number of nearest neighbours to return")
    ef: Optional[int] = Field(None, gt=0, description="HNSW search breadth")


class ManticoreStore:
    """Stores and searches vector documents in a Manticore table."""

    def __init__(
        self,
        http_client: httpx.Client,
        endpoint: str,
        table: str,
        field: str = "_vectors",
        dimensions: int = 1536,
        similarity: str = "cosine",
        knn_type: str = "hnsw",
    ):
        if similarity not in SIMILARITIES:
            raise InvalidConfiguration(
                f"Unsupported similarity {similarity!r}, expected one of {', '.join(SIMILARITIES)}."
            )
        if dimensions <= 0:
            raise InvalidConfiguration("Dimensions must be greater than 0.")
        if knn_type not in KNN_TYPES:
            raise InvalidConfiguration(
                f"Unsupported knn type {knn_type!r}, expected one of {', '.join(KNN_TYPES)}."
            )
        for name in (table, field):
            if not IDENTIFIER.fullmatch(name):
                raise InvalidConfiguration(f"Invalid table or field name {name!r}.")

        self.http_client = http_client
        # Only clients created by create_store() are closed by the store
        self._owns_client = False
        self.endpoint = endpoint.rstrip("/")
        self.table = table
        self.field = field
        self.dimensions = dimensions
        self.similarity = similarity
        self.knn_type = knn_type

    def __enter__(self):
        return self

    def __exit__(self, *args):
        if self._owns_client:
            self.http_client.close()

    def setup(self, options: Union[SetupOptions, Mapping[str, Any], None] = None):
        """Create the table if it does not exist yet."""
        if isinstance(options, Mapping):
            try:
                SetupOptions.model_validate(dict(options))
            except ValidationError as e:
                raise InvalidConfiguration("No supported options.") from e

        self._cli(
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            f"uuid string, "
            f"{self.field} float_vector knn_type='{self.knn_type}' "
            f"knn_dims='{self.dimensions}' hnsw_similarity='{self.similarity}', "
            f"metadata json)"
        )
        logger.info("Table ready", table=self.table, field=self.field, dimensions=self.dimensions)

    def drop(self):
        """Drop the table and everything stored in it."""
        self._cli(f"DROP TABLE IF EXISTS {self.table}")
        logger.info("Table dropped", table=self.table)

    def add(self, documents: Union[VectorDocument, Sequence[VectorDocument]]):
        """Insert documents with a single bulk request."""
        if isinstance(documents, VectorDocument):
            documents = [documents]
        documents = list(documents)
        if not documents:
            return

        actions = [
            {
                "insert": {
                    "table": self.table,
                    "doc": {
                        "uuid": document.id,
                        self.field: document.vector.to_list(),
                        "metadata": dict(document.metadata),
                    },
                }
            }
            for document in documents
        ]
        self._bulk(actions)
        logger.debug("Added documents", table=self.table, count=len(actions))

    def query(
        self,
        vector: Union[Vector, Sequence[float]],
        options: Union[QueryOptions, Mapping[str, Any], None] = None,
    ) -> Iterator[VectorDocument]:
        """Find the documents closest to ``vector``, nearest first.

        The search response is fetched and parsed before this returns, so
        request failures are raised here rather than during iteration. The
        returned iterator only walks hits that have already arrived.
        """
        options = self._query_options(options)
        if not isinstance(vector, Vector):
            vector = Vector(vector)

        knn: Dict[str, Any] = {
            "field": self.field,
            "query": vector.to_list(),
            "k": options.k,
        }
        if options.ef is not None:
            knn["ef"] = options.ef

        response = self._request("search", json={"table": self.table, "knn": knn})
        hits = response.json().get("hits", {}).get("hits", [])
        logger.debug("Vector search results", table=self.table, count=len(hits))

        documents = [self._to_document(hit) for hit in hits]
        return iter(documents)

    def remove(self, ids: Union[str, UUID, Sequence[Union[str, UUID]]]):
        """Delete documents by id, in batches of ``REMOVE_CHUNK_SIZE``."""
        if isinstance(ids, (str, UUID)):
            ids = [ids]
        ids = [str(document_id) for document_id in ids]
        if not ids:
            return

        for i in range(0, len(ids), REMOVE_CHUNK_SIZE):
            chunk = ids[i:i + REMOVE_CHUNK_SIZE]
            self._bulk([
                {
                    "delete": {
                        "table": self.table,
                        "query": {"equals": {"uuid": document_id}},
                    }
                }
                for document_id in chunk
            ])
            logger.debug("Removed documents", table=self.table, offset=i, count=len(chunk))

    def _query_options(self, options) -> QueryOptions:
        """Validate free-form query options."""
        if options is None:
            return QueryOptions()
        if isinstance(options, QueryOptions):
            return options
        try:
            return QueryOptions.model_validate(dict(options))
        except ValidationError as e:
            raise InvalidConfiguration(f"Invalid query options: {e}") from e

    def _to_document(self, hit: Dict[str, Any]) -> VectorDocument:
        """Convert a search hit into a document."""
        source = hit["_source"]
        metadata = source.get("metadata") or {}
        # Older servers hand json attributes back as encoded strings
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        score = hit.get("_knn_dist", hit.get("_score"))
        return VectorDocument(
            id=source["uuid"],
            vector=source[self.field],
            metadata=metadata,
            score=score,
        )

    def _cli(self, statement: str) -> str:
        """Run a SQL statement through the cli endpoint."""
        response = self._request(
            "cli",
            content=statement,
            headers={"Content-Type": "text/plain"},
        )
        if not QUERY_OK.search(response.text):
            logger.error("Unexpected cli response", table=self.table, body=response.text.strip())
            raise RequestFailed(
                f'Unexpected response returned for "{response.request.url}": {response.text.strip()}',
                request=response.request,
                response=response,
            )
        return response.text

    def _bulk(self, actions: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Send bulk actions as NDJSON and return the server's report."""
        payload = "".join(
            json.dumps(action, ensure_ascii=False, default=str) + "\n" for action in actions
        )
        response = self._request(
            "bulk",
            content=payload,
            headers={"Content-Type": "application/x-ndjson"},
        )
        try:
            report = response.json()
        except ValueError:
            report = {}
        if not isinstance(report, dict):
            report = {}
        # Per-item failures inside a 2xx reply are reported, not raised
        if report.get("errors"):
            logger.warning(
                "Bulk request reported errors",
                table=self.table,
                error=report.get("error", ""),
                items=len(report.get("items", [])),
            )
        return report

    def _request(self, path: str, **kwargs) -> httpx.Response:
        """POST to an endpoint path, raising RequestFailed on error statuses."""
        url = f"{self.endpoint}/{path}"
        try:
            response = self.http_client.post(url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Manticore request failed", url=url, status=e.response.status_code)
            raise RequestFailed.from_response(e.response) from e
        except httpx.HTTPError as e:
            logger.error("Error calling Manticore", url=url, error=str(e))
            raise
        return response


def create_store(
    http_client: Optional[httpx.Client] = None,
    **overrides,
) -> ManticoreStore:
    """Factory that builds a store from MANTICORE_* environment variables."""
    settings = {
        "endpoint": os.getenv("MANTICORE_URL", "http://localhost:9308"),
        "table": os.getenv("MANTICORE_TABLE", "vector_documents"),
        "field": os.getenv("MANTICORE_VECTOR_FIELD", "_vectors"),
        "dimensions": int(os.getenv("MANTICORE_DIMENSIONS", "1536")),
        "similarity": os.getenv("MANTICORE_SIMILARITY", "cosine").lower(),
    }
    settings.update(overrides)

    owns_client = http_client is None
    if owns_client:
        timeout = float(os.getenv("MANTICORE_TIMEOUT", "30.0"))
        http_client = httpx.Client(timeout=timeout)

    logger.info("Initializing Manticore store", endpoint=settings["endpoint"], table=settings["table"])
    store = ManticoreStore(http_client=http_client, **settings)
    store._owns_client = owns_client
    return store
