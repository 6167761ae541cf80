# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Entity store interface, unit of work and in-memory implementation.

Every multi-entity mutation runs inside one unit of work: entities read
through it have their version recorded, and commit writes every staged
change or none of them. A version that moved since it was read raises
ConcurrentModification.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..domain.errors import ConcurrentModification, EntityNotFound, StoreTimeout
from ..models.base import BaseEntity
from ..models.entities import ENTITY_MODELS

logger = logging.getLogger(__name__)

EntityKey = Tuple[str, str]

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


def _key(entity_type: str, entity_id: str) -> EntityKey:
    return (getattr(entity_type, "value", entity_type), entity_id)


def matches_filters(document: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Equality match on top-level camelCase document fields."""
    if not filters:
        return True
    return all(document.get(field) == value for field, value in filters.items())


class UnitOfWork:
    """
    Tracks entities read and written during one atomic operation.

    Entities returned by `get` are private copies; the same id returns the
    same object for the life of the unit. Nothing reaches the store until
    `commit`.
    """

    def __init__(self, store: "EntityStore"):
        self.store = store
        self._identity_map: Dict[EntityKey, BaseEntity] = {}
        self._read_versions: Dict[EntityKey, int] = {}
        self._pending: Dict[EntityKey, BaseEntity] = {}
        self.committed = False

    def get(self, entity_type: str, entity_id: str) -> BaseEntity:
        """
        Load an entity and record its version.

        Raises:
            EntityNotFound: if the store has no such entity
        """
        key = _key(entity_type, entity_id)
        if key in self._identity_map:
            return self._identity_map[key]

        entity = self.store.get(entity_type, entity_id)
        self._identity_map[key] = entity
        self._read_versions[key] = entity.version
        return entity

    def find(self, entity_type: str, filters: Optional[Dict[str, Any]] = None) -> List[BaseEntity]:
        """
        Query entities without tracking their versions.

        Entities already loaded or staged in this unit are matched in their
        current, uncommitted state.
        """
        entity_type = getattr(entity_type, "value", entity_type)
        result = []
        seen = set()

        for entity in self.store.find(entity_type, filters):
            key = _key(entity_type, entity.id)
            seen.add(key)
            local = self._identity_map.get(key)
            if local is None:
                result.append(entity)
            elif matches_filters(local.to_document(), filters):
                result.append(local)

        for key, entity in self._identity_map.items():
            if key[0] == entity_type and key not in seen and matches_filters(entity.to_document(), filters):
                result.append(entity)

        return result

    def add(self, entity: BaseEntity) -> BaseEntity:
        """Stage a new entity for insertion."""
        key = _key(entity.entity_type, entity.id)
        self._identity_map[key] = entity
        self._pending[key] = entity
        return entity

    def save(self, entity: BaseEntity) -> BaseEntity:
        """Stage a change to an entity loaded through this unit."""
        key = _key(entity.entity_type, entity.id)
        if key not in self._identity_map:
            self._identity_map[key] = entity
            self._read_versions[key] = entity.version
        self._pending[key] = entity
        return entity

    @property
    def pending(self) -> List[BaseEntity]:
        return list(self._pending.values())

    def commit(self) -> List[BaseEntity]:
        """
        Write all staged entities, checking every recorded version.

        Raises:
            ConcurrentModification: if any entity changed since it was read
            StoreTimeout: if the store could not commit in time
        """
        if self.committed:
            return []

        expected = dict(self._read_versions)
        for key, entity in self._pending.items():
            expected.setdefault(key, entity.version)

        written = self.store.commit(expected, self.pending)
        self.committed = True
        return written


class EntityStore(ABC):
    """Versioned entity storage with an atomic multi-entity commit."""

    @abstractmethod
    def get(self, entity_type: str, entity_id: str) -> BaseEntity:
        """Load an entity by id, raising EntityNotFound when missing."""

    @abstractmethod
    def find(self, entity_type: str, filters: Optional[Dict[str, Any]] = None) -> List[BaseEntity]:
        """Load entities matching camelCase field equality filters."""

    @abstractmethod
    def commit(self, expected_versions: Dict[EntityKey, int], entities: List[BaseEntity]) -> List[BaseEntity]:
        """
        Atomically check versions and write entities.

        Each written entity is stored with version + 1 and its in-memory
        version is bumped to match.
        """

    def exists(self, entity_type: str, entity_id: str) -> bool:
        try:
            self.get(entity_type, entity_id)
            return True
        except EntityNotFound:
            return False

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """Run a block as one atomic unit; an exception discards every staged change."""
        uow = UnitOfWork(self)
        yield uow
        uow.commit()

    def put(self, entity: BaseEntity) -> BaseEntity:
        """Insert or update a single entity under version check."""
        with self.unit_of_work() as uow:
            uow.save(entity)
        return entity

    def update_atomic(self, entity_type: str, entity_id: str, mutator: Callable[[BaseEntity], Any]) -> BaseEntity:
        """Read, mutate and write one entity as an atomic unit."""
        with self.unit_of_work() as uow:
            entity = uow.get(entity_type, entity_id)
            mutator(entity)
            uow.save(entity)
        return entity


class InMemoryEntityStore(EntityStore):
    """
    Thread-safe in-memory store for tests and local runs.

    Documents are kept in their serialised form so callers never share
    mutable state with the store. Every access takes one lock, acquired with
    a bounded timeout.
    """

    def __init__(self, lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.lock_timeout_seconds = lock_timeout_seconds
        self._lock = threading.Lock()
        self._documents: Dict[str, Dict[str, Dict[str, Any]]] = {}
        logger.info("In-memory entity store initialized")

    @contextmanager
    def _locked(self, operation: str) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.lock_timeout_seconds):
            logger.error(
                "Store lock timeout",
                extra={"extra_fields": {"operation": operation, "timeout": self.lock_timeout_seconds}}
            )
            raise StoreTimeout(operation, self.lock_timeout_seconds, "lock not acquired")
        try:
            yield
        finally:
            self._lock.release()

    def _collection(self, entity_type: str) -> Dict[str, Dict[str, Any]]:
        return self._documents.setdefault(getattr(entity_type, "value", entity_type), {})

    def get(self, entity_type: str, entity_id: str) -> BaseEntity:
        entity_type = getattr(entity_type, "value", entity_type)
        with self._locked(f"get:{entity_type}"):
            document = self._collection(entity_type).get(entity_id)
        if document is None:
            raise EntityNotFound(entity_type, entity_id)
        return ENTITY_MODELS[entity_type].from_document(document)

    def find(self, entity_type: str, filters: Optional[Dict[str, Any]] = None) -> List[BaseEntity]:
        entity_type = getattr(entity_type, "value", entity_type)
        with self._locked(f"find:{entity_type}"):
            documents = [
                document for document in self._collection(entity_type).values()
                if matches_filters(document, filters)
            ]
        model = ENTITY_MODELS[entity_type]
        return [model.from_document(document) for document in documents]

    def commit(self, expected_versions: Dict[EntityKey, int], entities: List[BaseEntity]) -> List[BaseEntity]:
        with self._locked("commit"):
            for (entity_type, entity_id), expected in expected_versions.items():
                current = self._collection(entity_type).get(entity_id)
                actual = current["version"] if current is not None else 0
                if actual != expected:
                    logger.warning(
                        "Version conflict on commit",
                        extra={"extra_fields": {
                            "entity_type": entity_type,
                            "entity_id": entity_id,
                            "expected_version": expected,
                            "actual_version": actual
                        }}
                    )
                    raise ConcurrentModification(entity_type, entity_id, expected, actual)

            for entity in entities:
                document = entity.to_document()
                document["version"] = entity.version + 1
                self._collection(entity.entity_type)[entity.id] = document

        for entity in entities:
            entity.version += 1

        logger.debug(f"Committed {len(entities)} entities")
        return entities

    def clear(self) -> None:
        with self._locked("clear"):
            self._documents.clear()
