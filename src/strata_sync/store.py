# src/strata_sync/store.py
"""
The document-store interface the transfer engine talks to.

The engine never imports a database client directly; it is handed two
objects implementing `DocumentStore`, one for the source and one for the
destination. This keeps every component testable against in-memory fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from strata_sync.config import WhereFilter


@dataclass(frozen=True)
class DocumentSnapshot:
    """
    A document read from a store.

    Attributes:
        id (str): The document id.
        collection_path (str): Path of the collection holding the document.
        data (Dict[str, Any]): Field values; empty for id-only reads.
        update_time (str, optional): The server version marker.
    """

    id: str
    collection_path: str
    data: Dict[str, Any] = field(default_factory=dict)
    update_time: Optional[str] = None

    @property
    def path(self) -> str:
        return f"{self.collection_path}/{self.id}"


class WriteBatch(Protocol):
    """A set of upserts and deletes committed atomically."""

    def set(
        self,
        collection_path: str,
        doc_id: str,
        data: Dict[str, Any],
        merge: bool = False,
    ) -> None: ...

    def delete(self, collection_path: str, doc_id: str) -> None: ...

    def __len__(self) -> int: ...

    async def commit(self) -> None: ...


class DocumentStore(Protocol):
    """A hierarchical document store client."""

    @property
    def name(self) -> str: ...

    async def list_collections(self) -> List[str]: ...

    async def list_subcollections(
        self, collection_path: str, doc_id: str
    ) -> List[str]: ...

    async def get_documents(
        self,
        collection_path: str,
        filters: Sequence[WhereFilter] = (),
        limit: int = 0,
        ids_only: bool = False,
    ) -> List[DocumentSnapshot]: ...

    async def get_many(
        self, collection_path: str, doc_ids: Sequence[str]
    ) -> Dict[str, DocumentSnapshot]: ...

    async def count(
        self, collection_path: str, filters: Sequence[WhereFilter] = ()
    ) -> int: ...

    def batch(self) -> WriteBatch: ...

    async def close(self) -> None: ...
