# src/strata_sync/firestore.py
"""
`DocumentStore` implementation backed by Google Cloud Firestore.

Credentials are resolved by the Google client libraries themselves
(Application Default Credentials, `GOOGLE_APPLICATION_CREDENTIALS`).
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from strata_sync.config import TransferConfig, WhereFilter
from strata_sync.store import DocumentSnapshot, DocumentStore

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreErrorInfo:
    """A human-readable description of a store error."""

    message: str
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message} (hint: {self.suggestion})"
        return self.message


_CREDENTIALS = StoreErrorInfo(
    "Invalid credentials",
    "Run 'gcloud auth application-default login' to authenticate",
)
_PERMISSION = StoreErrorInfo(
    "Permission denied",
    "Ensure you have Firestore read/write access on this project",
)
_UNAVAILABLE = StoreErrorInfo(
    "Service unavailable", "Check your internet connection and try again"
)
_NOT_FOUND = StoreErrorInfo(
    "Resource not found",
    "Verify the project id and collection path are correct",
)
_QUOTA = StoreErrorInfo(
    "Quota exceeded",
    "Try reducing --batch-size or --parallel, or wait and retry later",
)
_TIMEOUT = StoreErrorInfo(
    "Request timeout",
    "Try reducing --batch-size or check your network connection",
)

_ERROR_MAP: Tuple[Tuple[Type[BaseException], StoreErrorInfo], ...] = (
    (auth_exceptions.DefaultCredentialsError, _CREDENTIALS),
    (api_exceptions.Unauthenticated, _CREDENTIALS),
    (api_exceptions.PermissionDenied, _PERMISSION),
    (api_exceptions.ServiceUnavailable, _UNAVAILABLE),
    (api_exceptions.NotFound, _NOT_FOUND),
    (api_exceptions.ResourceExhausted, _QUOTA),
    (api_exceptions.DeadlineExceeded, _TIMEOUT),
    (
        api_exceptions.InvalidArgument,
        StoreErrorInfo("Invalid argument", "Check your query filters and document data"),
    ),
    (
        api_exceptions.AlreadyExists,
        StoreErrorInfo(
            "Document already exists",
            "Use --merge to update existing documents",
        ),
    ),
    (
        api_exceptions.Aborted,
        StoreErrorInfo(
            "Operation aborted",
            "A concurrent operation conflicted. Retry the transfer",
        ),
    ),
)

_KEYWORD_MAP: Tuple[Tuple[Tuple[str, ...], StoreErrorInfo], ...] = (
    (("credential", "authentication"), _CREDENTIALS),
    (("permission", "denied"), _PERMISSION),
    (("unavailable", "network"), _UNAVAILABLE),
    (("not found", "not_found"), _NOT_FOUND),
    (("quota", "exhausted", "rate"), _QUOTA),
    (("timeout", "deadline"), _TIMEOUT),
)


def describe_store_error(error: BaseException) -> StoreErrorInfo:
    """
    Translate a client error into a message and an actionable hint.

    Args:
        error (BaseException): The error raised by the Firestore client.

    Returns:
        StoreErrorInfo: The description; falls back to the raw message.
    """
    for error_type, info in _ERROR_MAP:
        if isinstance(error, error_type):
            return info
    text: str = str(error).lower()
    for keywords, info in _KEYWORD_MAP:
        if any(keyword in text for keyword in keywords):
            return info
    return StoreErrorInfo(str(error))


class FirestoreWriteBatch:
    """Adapts `AsyncWriteBatch` to the path-based `WriteBatch` protocol."""

    def __init__(self, client: firestore.AsyncClient) -> None:
        self._client: firestore.AsyncClient = client
        self._batch: Any = client.batch()
        self._size: int = 0

    def set(
        self,
        collection_path: str,
        doc_id: str,
        data: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        ref = self._client.collection(collection_path).document(doc_id)
        self._batch.set(ref, data, merge=merge)
        self._size += 1

    def delete(self, collection_path: str, doc_id: str) -> None:
        ref = self._client.collection(collection_path).document(doc_id)
        self._batch.delete(ref)
        self._size += 1

    def __len__(self) -> int:
        return self._size

    async def commit(self) -> None:
        await self._batch.commit()


def _version(snapshot: Any) -> Optional[str]:
    update_time: Any = getattr(snapshot, "update_time", None)
    return update_time.isoformat() if update_time is not None else None


class FirestoreStore:
    """A Firestore database exposed as a `DocumentStore`."""

    def __init__(self, project: str, database: Optional[str] = None) -> None:
        """
        Create the async client for `project`.

        Args:
            project (str): The Google Cloud project id.
            database (str, optional): A named database; the default if None.
        """
        self._project: str = project
        kwargs: Dict[str, Any] = {"project": project}
        if database:
            kwargs["database"] = database
        self._client: firestore.AsyncClient = firestore.AsyncClient(**kwargs)

    @property
    def name(self) -> str:
        return self._project

    def _query(
        self,
        collection_path: str,
        filters: Sequence[WhereFilter] = (),
        limit: int = 0,
    ) -> Any:
        query: Any = self._client.collection(collection_path)
        for where in filters:
            query = query.where(filter=FieldFilter(where.field, where.op, where.value))
        if limit > 0:
            query = query.limit(limit)
        return query

    async def list_collections(self) -> List[str]:
        return [collection.id async for collection in self._client.collections()]

    async def list_subcollections(self, collection_path: str, doc_id: str) -> List[str]:
        ref = self._client.collection(collection_path).document(doc_id)
        return [collection.id async for collection in ref.collections()]

    async def get_documents(
        self,
        collection_path: str,
        filters: Sequence[WhereFilter] = (),
        limit: int = 0,
        ids_only: bool = False,
    ) -> List[DocumentSnapshot]:
        query: Any = self._query(collection_path, filters, limit)
        if ids_only:
            query = query.select([FieldPath.document_id()])
        return [
            DocumentSnapshot(
                id=snapshot.id,
                collection_path=collection_path,
                data={} if ids_only else (snapshot.to_dict() or {}),
                update_time=_version(snapshot),
            )
            async for snapshot in query.stream()
        ]

    async def get_many(
        self, collection_path: str, doc_ids: Sequence[str]
    ) -> Dict[str, DocumentSnapshot]:
        if not doc_ids:
            return {}
        collection = self._client.collection(collection_path)
        refs = [collection.document(doc_id) for doc_id in doc_ids]
        found: Dict[str, DocumentSnapshot] = {}
        async for snapshot in self._client.get_all(refs):
            if snapshot.exists:
                found[snapshot.id] = DocumentSnapshot(
                    id=snapshot.id,
                    collection_path=collection_path,
                    data=snapshot.to_dict() or {},
                    update_time=_version(snapshot),
                )
        return found

    async def count(
        self, collection_path: str, filters: Sequence[WhereFilter] = ()
    ) -> int:
        results: Any = await self._query(collection_path, filters).count().get()
        return int(results[0][0].value)

    def batch(self) -> FirestoreWriteBatch:
        return FirestoreWriteBatch(self._client)

    async def close(self) -> None:
        result: Any = self._client.close()
        if inspect.isawaitable(result):
            await result
        logger.debug(f"Firestore client for '{self._project}' closed.")


def open_stores(config: TransferConfig) -> Tuple[DocumentStore, DocumentStore]:
    """Create the source and destination stores for a run."""
    source: DocumentStore = FirestoreStore(config.source)
    destination: DocumentStore = FirestoreStore(config.destination)
    return source, destination
