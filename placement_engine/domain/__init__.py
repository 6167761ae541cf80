# SPDX-License-Identifier: Apache-2.0

"""
Domain logic package for the placement lifecycle engine.

This package contains pure business logic functions with no side effects:
compatibility scoring, status transition tables, approximation progress,
cost allocation and statistics. Nothing here touches the store or the
notifier.
"""
