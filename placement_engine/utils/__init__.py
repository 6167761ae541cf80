# SPDX-License-Identifier: Apache-2.0

"""
Utilities - retry helpers for retryable engine errors.
"""
