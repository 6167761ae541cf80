# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Placement lifecycle engine.

Matches children awaiting foster care to host families, drives the
resulting placements through their approximation process and keeps the
placement budget balanced.
"""

from .config import EngineConfig, load_config_from_env
from .engine import PlacementEngine, create_engine

__version__ = "1.0.0"

__all__ = [
    "EngineConfig",
    "load_config_from_env",
    "PlacementEngine",
    "create_engine",
]
