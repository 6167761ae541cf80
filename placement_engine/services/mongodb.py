# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB entity store with connection pooling, bounded timeouts and
multi-document transactions.
"""

import os
import logging
from typing import Any, Dict, List, Optional
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
    WTimeoutError
)

from ..domain.errors import ConcurrentModification, EntityNotFound, StoreTimeout
from ..models.base import BaseEntity
from ..models.entities import ENTITY_MODELS
from ..models.enums import EntityType
from .store import EntityKey, EntityStore

logger = logging.getLogger(__name__)

COLLECTIONS: Dict[str, str] = {
    EntityType.CHILD.value: "children",
    EntityType.FAMILY.value: "families",
    EntityType.MATCHING.value: "matchings",
    EntityType.PLACEMENT.value: "placements",
    EntityType.BUDGET.value: "budgets",
    EntityType.AUDIT_LOG.value: "audit_logs",
}

WRITE_CONFLICT_CODE = 112

_TIMEOUT_ERRORS = (ServerSelectionTimeoutError, NetworkTimeout, ExecutionTimeout, WTimeoutError)


class MongoEntityStore(EntityStore):
    """Entity store backed by MongoDB replica-set transactions."""

    def __init__(
        self,
        connection_string: str = None,
        database_name: str = None,
        client: Optional[MongoClient] = None
    ):
        """Initialize MongoDB store with connection pooling and timeouts."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/placement_engine_dev?replicaSet=rs0'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'placement_engine_dev')
        self._client: Optional[MongoClient] = client
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))
        self.socket_timeout_ms = int(os.getenv('MONGODB_SOCKET_TIMEOUT_MS', '10000'))
        self.max_commit_time_ms = int(os.getenv('MONGODB_MAX_COMMIT_TIME_MS', '5000'))

        logger.info(f"MongoDB store initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    socketTimeoutMS=self.socket_timeout_ms,
                    retryWrites=True,
                    retryReads=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise StoreTimeout("connect", self.server_selection_timeout_ms / 1000, str(e)) from e

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, entity_type: str) -> Collection:
        """Get the MongoDB collection holding an entity type."""
        return self.database[COLLECTIONS[getattr(entity_type, "value", entity_type)]]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def _timeout(self, operation: str, error: Exception) -> StoreTimeout:
        logger.error(f"MongoDB {operation} timed out: {error}")
        return StoreTimeout(operation, self.socket_timeout_ms / 1000, str(error))

    @staticmethod
    def _to_mongo(entity: BaseEntity, version: int) -> Dict[str, Any]:
        # JSON mode so plain dates and enums encode as BSON-friendly values
        document = entity.model_dump(by_alias=True, mode="json")
        document["_id"] = document.pop("id")
        document["version"] = version
        return document

    @staticmethod
    def _from_mongo(entity_type: str, document: Dict[str, Any]) -> BaseEntity:
        document = dict(document)
        document["id"] = str(document.pop("_id"))
        return ENTITY_MODELS[entity_type].from_document(document)

    def get(self, entity_type: str, entity_id: str) -> BaseEntity:
        entity_type = getattr(entity_type, "value", entity_type)
        try:
            document = self.get_collection(entity_type).find_one({"_id": entity_id})
        except _TIMEOUT_ERRORS as e:
            raise self._timeout(f"get:{entity_type}", e) from e

        if document is None:
            logger.debug(f"Document {entity_id} not found in {COLLECTIONS[entity_type]}")
            raise EntityNotFound(entity_type, entity_id)
        return self._from_mongo(entity_type, document)

    def find(self, entity_type: str, filters: Optional[Dict[str, Any]] = None) -> List[BaseEntity]:
        entity_type = getattr(entity_type, "value", entity_type)
        try:
            documents = list(self.get_collection(entity_type).find(filters or {}))
        except _TIMEOUT_ERRORS as e:
            raise self._timeout(f"find:{entity_type}", e) from e

        logger.debug(f"Found {len(documents)} documents in {COLLECTIONS[entity_type]}")
        return [self._from_mongo(entity_type, document) for document in documents]

    def _current_version(self, collection: Collection, entity_id: str, session) -> int:
        current = collection.find_one({"_id": entity_id}, {"version": 1}, session=session)
        return current["version"] if current is not None else 0

    def _apply(self, expected_versions: Dict[EntityKey, int], entities: List[BaseEntity], session) -> None:
        written = {(entity.entity_type, entity.id) for entity in entities}

        # Entities read but not written must still be unchanged
        for (entity_type, entity_id), expected in expected_versions.items():
            if (entity_type, entity_id) in written:
                continue
            actual = self._current_version(self.get_collection(entity_type), entity_id, session)
            if actual != expected:
                raise ConcurrentModification(entity_type, entity_id, expected, actual)

        for entity in entities:
            key = (entity.entity_type, entity.id)
            expected = expected_versions.get(key, entity.version)
            collection = self.get_collection(entity.entity_type)
            document = self._to_mongo(entity, expected + 1)

            if expected == 0:
                try:
                    collection.insert_one(document, session=session)
                except DuplicateKeyError as e:
                    actual = self._current_version(collection, entity.id, session)
                    raise ConcurrentModification(entity.entity_type, entity.id, expected, actual) from e
                continue

            result = collection.replace_one({"_id": entity.id, "version": expected}, document, session=session)
            if result.matched_count == 0:
                actual = self._current_version(collection, entity.id, session)
                raise ConcurrentModification(entity.entity_type, entity.id, expected, actual)

    def commit(self, expected_versions: Dict[EntityKey, int], entities: List[BaseEntity]) -> List[BaseEntity]:
        try:
            with self.client.start_session() as session:
                with session.start_transaction(max_commit_time_ms=self.max_commit_time_ms):
                    self._apply(expected_versions, entities, session)
        except _TIMEOUT_ERRORS as e:
            raise self._timeout("commit", e) from e
        except OperationFailure as e:
            if e.code == WRITE_CONFLICT_CODE:
                logger.warning(f"MongoDB write conflict on commit: {e}")
                key = (entities[0].entity_type, entities[0].id) if entities else ("unknown", "unknown")
                raise ConcurrentModification(key[0], key[1], expected_versions.get(key, 0), None) from e
            logger.error(f"MongoDB commit failed: {e}")
            raise

        for entity in entities:
            entity.version += 1

        logger.info(f"Committed {len(entities)} documents")
        return entities

    # Index Management

    def create_indexes(self) -> None:
        """Create lookup indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            children = self.get_collection(EntityType.CHILD)
            children.create_index("currentStatus")

            families = self.get_collection(EntityType.FAMILY)
            families.create_index("status")

            matchings = self.get_collection(EntityType.MATCHING)
            matchings.create_index([("childId", ASCENDING), ("proposedDate", DESCENDING)])
            matchings.create_index([("familyId", ASCENDING), ("proposedDate", DESCENDING)])
            matchings.create_index("status")

            placements = self.get_collection(EntityType.PLACEMENT)
            placements.create_index([("childId", ASCENDING), ("status", ASCENDING)])
            placements.create_index([("familyId", ASCENDING), ("status", ASCENDING)])

            budgets = self.get_collection(EntityType.BUDGET)
            budgets.create_index("fiscalYear", unique=True)

            audit_logs = self.get_collection(EntityType.AUDIT_LOG)
            audit_logs.create_index([("entity", ASCENDING), ("entityId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("actorId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")

            logger.info("MongoDB indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise


def create_mongodb_store() -> MongoEntityStore:
    """Create MongoDB store from environment variables."""
    return MongoEntityStore(
        connection_string=os.getenv('MONGODB_URI'),
        database_name=os.getenv('MONGODB_DATABASE')
    )
