"""
Schema and log repositories.

Both key every storage path off an Identity. Reads and subscriptions return
pydantic models; writes go through DocumentStore and raise SyncError on
failure.
"""

import logging
from typing import Callable, Generic, List, Optional, TypeVar

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from database import DocumentStore
from errors import SyncError
from schemas import Identity, LogEntry, LogEntryCreate, Schema, default_schema


logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_COLLECTION = "config"
LOGS_COLLECTION = "logs"


class Subscription(Generic[T]):
    """
    Live, cancellable stream of snapshots.

    The change stream is opened on construction so nothing written after
    subscribing is missed. The first next() returns `initial` when given,
    otherwise the current snapshot; every later next() blocks until a change
    arrives and returns a fresh full snapshot. Once closed the stream cannot
    be restarted.
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        match: dict,
        load: Callable[[], T],
        name: str = "",
        initial: Optional[T] = None,
    ):
        self.name = name or collection
        self._load = load
        self._initial = initial
        self._primed = False
        self._closed = False
        self._stream = store.watch(collection, match)
        logger.debug(f"Subscription {self.name} opened")

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self):
        return self

    def __next__(self) -> T:
        if self._closed:
            raise StopIteration
        if not self._primed:
            self._primed = True
            if self._initial is not None:
                initial, self._initial = self._initial, None
                return initial
            return self._load()
        while not self._closed:
            try:
                change = self._stream.try_next()
            except PyMongoError as e:
                if self._closed:
                    break
                logger.error(f"Change stream error on {self.name}: {str(e)}")
                raise SyncError(f"Subscription {self.name} failed") from e
            if change is not None:
                logger.debug(f"Change on {self.name}: {change.get('operationType')}")
                return self._load()
        raise StopIteration

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._stream.close()
        except PyMongoError as e:
            logger.error(f"Error closing subscription {self.name}: {str(e)}")
        logger.debug(f"Subscription {self.name} closed")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class SchemaRepository:
    """
    One Schema document per identity. Writes replace the whole document:
    no merge, no version check, the last writer wins.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def doc_id(self, identity: Identity) -> str:
        return f"{self.store.app_id}/{identity.uid}/schema"

    def get(self, identity: Identity) -> Schema:
        doc_id = self.doc_id(identity)
        doc = self.store.find_document(CONFIG_COLLECTION, doc_id)
        if doc is None:
            logger.info(f"No schema for {identity.uid}, seeding defaults")
            initial = default_schema()
            self.store.insert_if_absent(CONFIG_COLLECTION, doc_id, self._to_doc(identity, initial))
            doc = self.store.find_document(CONFIG_COLLECTION, doc_id)
            if doc is None:
                return initial
        try:
            return Schema.model_validate({"categories": doc.get("categories", [])})
        except ValidationError as e:
            logger.error(f"Stored schema {doc_id} is invalid: {str(e)}")
            raise SyncError(f"Stored schema for {identity.uid} is invalid") from e

    def subscribe(self, identity: Identity) -> Subscription[Schema]:
        # seeded before the stream opens so the seeding write is never echoed
        current = self.get(identity)
        return Subscription(
            self.store,
            CONFIG_COLLECTION,
            {"documentKey._id": self.doc_id(identity)},
            lambda: self.get(identity),
            name=f"schema:{identity.uid}",
            initial=current,
        )

    def replace(self, identity: Identity, schema: Schema) -> None:
        self.store.replace_document(CONFIG_COLLECTION, self.doc_id(identity), self._to_doc(identity, schema))
        logger.info(f"Schema replaced for {identity.uid} ({len(schema.categories)} categories)")

    def apply(
        self,
        identity: Identity,
        current: Schema,
        edit: Callable[..., Schema],
        *args,
        before_write: Optional[Callable[[Schema], None]] = None,
        **kwargs,
    ) -> Schema:
        """
        Apply one structural edit to `current` and write the whole tree back.

        before_write sees the edited tree ahead of the store round trip and is
        not undone if the write fails.
        """
        updated = edit(current, *args, **kwargs)
        if before_write is not None:
            before_write(updated)
        self.replace(identity, updated)
        return updated

    def _to_doc(self, identity: Identity, schema: Schema) -> dict:
        doc = schema.model_dump(mode="json")
        doc["app_id"] = self.store.app_id
        doc["uid"] = identity.uid
        return doc


def _sort_key(entry: LogEntry) -> float:
    # unresolved server timestamps count as the epoch
    return entry.timestamp.timestamp() if entry.timestamp else 0.0


def sort_logs(entries: List[LogEntry]) -> List[LogEntry]:
    return sorted(entries, key=_sort_key, reverse=True)


class LogRepository:
    """
    Append-only review log per identity.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def _owner(self, identity: Identity) -> dict:
        return {"app_id": self.store.app_id, "uid": identity.uid}

    def list(self, identity: Identity, limit: Optional[int] = None) -> List[LogEntry]:
        docs = self.store.get_documents(LOGS_COLLECTION, self._owner(identity))
        try:
            entries = sort_logs([self._from_doc(d) for d in docs])
        except ValidationError as e:
            logger.error(f"Stored review log for {identity.uid} is invalid: {str(e)}")
            raise SyncError(f"Stored review log for {identity.uid} is invalid") from e
        return entries[:limit] if limit else entries

    def subscribe(self, identity: Identity) -> Subscription[List[LogEntry]]:
        return Subscription(
            self.store,
            LOGS_COLLECTION,
            {"fullDocument.app_id": self.store.app_id, "fullDocument.uid": identity.uid},
            lambda: self.list(identity),
            name=f"logs:{identity.uid}",
        )

    def append(self, identity: Identity, entry: LogEntryCreate) -> str:
        document = entry.model_dump()
        document.update(self._owner(identity))
        entry_id = self.store.create_document(LOGS_COLLECTION, document, timestamp_field="timestamp")
        logger.info(f"Review {entry_id} logged for {identity.uid} ({len(entry.data)} habits)")
        return entry_id

    @staticmethod
    def _from_doc(doc: dict) -> LogEntry:
        return LogEntry(
            id=str(doc["_id"]),
            data=doc.get("data") or {},
            reflection=doc.get("reflection") or "",
            timestamp=doc.get("timestamp"),
        )
