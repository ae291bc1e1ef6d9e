"""
Document store client context.

One DocumentStore is constructed at process start and handed to the
repositories; nothing here is a module-level singleton. Every store failure
is logged and re-raised as SyncError.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import MongoClient
from pymongo.errors import ConfigurationError as MongoConfigurationError
from pymongo.errors import PyMongoError

from errors import ConfigurationError, SyncError
from settings import StoreConfig


logger = logging.getLogger(__name__)


class DocumentStore:
    def __init__(self, db, app_id: str, max_await_ms: int = 500):
        self.db = db
        self.app_id = app_id
        self.max_await_ms = max_await_ms

    @classmethod
    def connect(cls, config: StoreConfig) -> "DocumentStore":
        """Create the store for a validated config. Does not touch the network."""
        try:
            client = MongoClient(config.database_url, tz_aware=True)
        except MongoConfigurationError as e:
            raise ConfigurationError(f"Configuration required (database_url: {str(e)})") from e
        logger.info(f"Document store configured for database {config.database_name}")
        return cls(client[config.database_name], config.app_id, config.max_await_ms)

    @property
    def name(self) -> str:
        return self.db.name

    def collection_names(self) -> List[str]:
        try:
            return self.db.list_collection_names()
        except PyMongoError as e:
            logger.error(f"Database error listing collections: {str(e)}")
            raise SyncError("Failed to list collections") from e

    # -----------------------------
    # Reads
    # -----------------------------
    def find_document(self, collection: str, doc_id: Any) -> Optional[dict]:
        try:
            return self.db[collection].find_one({"_id": doc_id})
        except PyMongoError as e:
            logger.error(f"Database error reading {collection}/{doc_id}: {str(e)}")
            raise SyncError(f"Failed to read {collection}") from e

    def get_documents(self, collection: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
        try:
            cursor = self.db[collection].find(filter_dict or {})
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except PyMongoError as e:
            logger.error(f"Database error querying {collection}: {str(e)}")
            raise SyncError(f"Failed to query {collection}") from e

    # -----------------------------
    # Writes
    # -----------------------------
    def replace_document(self, collection: str, doc_id: Any, document: dict) -> None:
        """Overwrite the whole document, creating it if needed."""
        try:
            self.db[collection].replace_one({"_id": doc_id}, document, upsert=True)
        except PyMongoError as e:
            logger.error(f"Database error replacing {collection}/{doc_id}: {str(e)}")
            raise SyncError(f"Failed to write {collection}") from e

    def insert_if_absent(self, collection: str, doc_id: Any, document: dict) -> None:
        try:
            self.db[collection].update_one({"_id": doc_id}, {"$setOnInsert": document}, upsert=True)
        except PyMongoError as e:
            logger.error(f"Database error initializing {collection}/{doc_id}: {str(e)}")
            raise SyncError(f"Failed to initialize {collection}") from e

    def create_document(self, collection: str, document: dict, timestamp_field: Optional[str] = None) -> str:
        """
        Insert a new document with a store-assigned id. When timestamp_field
        is given the server sets it to its own clock, never the client's.
        """
        doc_id = ObjectId()
        update: Dict[str, Any] = {"$setOnInsert": document}
        if timestamp_field:
            update["$currentDate"] = {timestamp_field: True}
        try:
            self.db[collection].update_one({"_id": doc_id}, update, upsert=True)
        except PyMongoError as e:
            logger.error(f"Database error inserting into {collection}: {str(e)}")
            raise SyncError(f"Failed to insert into {collection}") from e
        return str(doc_id)

    # -----------------------------
    # Live changes
    # -----------------------------
    def watch(self, collection: str, match: dict):
        """Open a change stream over events matching `match`."""
        try:
            return self.db[collection].watch(
                [{"$match": match}],
                full_document="updateLookup",
                max_await_time_ms=self.max_await_ms,
            )
        except PyMongoError as e:
            logger.error(f"Database error opening change stream on {collection}: {str(e)}")
            raise SyncError(f"Failed to subscribe to {collection}") from e
