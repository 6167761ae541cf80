# SPDX-License-Identifier: Apache-2.0

"""
Tracing and structured logging setup.
"""

from .config import StructuredFormatter, setup_observability, setup_structured_logging

__all__ = ["StructuredFormatter", "setup_observability", "setup_structured_logging"]
