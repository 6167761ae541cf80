#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Script to create the MongoDB indexes used by the placement engine.

Usage:
    python -m placement_engine.scripts.create_indexes
"""

import sys
import logging

from placement_engine.domain.errors import StoreTimeout
from placement_engine.services.mongodb import create_mongodb_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main() -> int:
    """Create MongoDB indexes; returns the process exit code."""
    store = create_mongodb_store()
    try:
        logger.info(f"Starting MongoDB index creation on {store.database_name}...")
        store.create_indexes()
        logger.info("MongoDB indexes created successfully!")
        return 0
    except StoreTimeout as e:
        logger.error(f"MongoDB is not reachable: {e}")
        return 1
    finally:
        store.close_connection()


if __name__ == "__main__":
    sys.exit(main())
