# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Storage, events, audit and the lifecycle workflows.
"""

from .store import EntityStore, InMemoryEntityStore, UnitOfWork
from .mongodb import MongoEntityStore, create_mongodb_store
from .notifier import (
    Notifier,
    InMemoryNotifier,
    AMQPNotifier,
    AMQPConfig,
    PublishResult,
    create_amqp_notifier
)
from .audit import AuditService, AuditFilters
from .budget import BudgetService
from .matching import MatchingWorkflow, BatchRankingResult, BatchProposalResult
from .placements import PlacementStateMachine
from .approximation import ApproximationTracker

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "UnitOfWork",
    "MongoEntityStore",
    "create_mongodb_store",
    "Notifier",
    "InMemoryNotifier",
    "AMQPNotifier",
    "AMQPConfig",
    "PublishResult",
    "create_amqp_notifier",
    "AuditService",
    "AuditFilters",
    "BudgetService",
    "MatchingWorkflow",
    "BatchRankingResult",
    "BatchProposalResult",
    "PlacementStateMachine",
    "ApproximationTracker"
]
