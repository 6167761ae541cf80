# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the conflict retry helper.
"""

import pytest
from unittest.mock import Mock

from placement_engine.domain.errors import ConcurrentModification, EntityNotFound, StoreTimeout
from placement_engine.utils.retry import call_with_retry, retry_on_conflict


class TestCallWithRetry:
    """Test retrying retryable engine errors."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sleeps = []

    def test_success_first_time(self):
        """Test a successful call is not retried."""
        operation = Mock(return_value="done")

        assert call_with_retry(operation, sleep=self.sleeps.append) == "done"
        assert operation.call_count == 1
        assert self.sleeps == []

    def test_retries_conflicts_with_backoff(self):
        """Test conflicts are retried with doubling delays."""
        conflict = ConcurrentModification("family", "family-1", 1, 2)
        operation = Mock(side_effect=[conflict, StoreTimeout("commit", 1.0), "done"])

        result = call_with_retry(operation, max_retries=3, base_delay=0.1, sleep=self.sleeps.append)

        assert result == "done"
        assert self.sleeps == [pytest.approx(0.1), pytest.approx(0.2)]

    def test_gives_up_after_max_retries(self):
        """Test the last conflict is raised once retries are exhausted."""
        operation = Mock(side_effect=ConcurrentModification("family", "family-1", 1, 2))

        with pytest.raises(ConcurrentModification):
            call_with_retry(operation, max_retries=2, sleep=self.sleeps.append)

        assert operation.call_count == 3
        assert len(self.sleeps) == 2

    def test_non_retryable_raised_at_once(self):
        """Test invariant errors are never retried."""
        operation = Mock(side_effect=EntityNotFound("child", "missing"))

        with pytest.raises(EntityNotFound):
            call_with_retry(operation, sleep=self.sleeps.append)

        assert operation.call_count == 1

    def test_decorator(self):
        """Test the decorator passes arguments through on every attempt."""
        calls = []

        @retry_on_conflict(max_retries=1, base_delay=0, sleep=self.sleeps.append)
        def place(matching_id, actor_id=None):
            calls.append((matching_id, actor_id))
            if len(calls) == 1:
                raise ConcurrentModification("matching", matching_id, 1, 2)
            return matching_id

        assert place("m1", actor_id="u1") == "m1"
        assert calls == [("m1", "u1"), ("m1", "u1")]
        assert place.__name__ == "place"


class TestRetryAgainstStore:
    """Test retrying a real conflict on the in-memory store."""

    def test_conflicting_writer_retried(self, engine, registered_pair, actor_id):
        """Test a retried operation re-reads fresh state and succeeds."""
        child, family = registered_pair
        matching = engine.propose_matching(child.id, family.id, actor_id)
        attempts = []
        original_commit = engine.store.commit

        def commit_once_conflicting(expected_versions, entities):
            attempts.append(len(entities))
            if len(attempts) == 1:
                raise ConcurrentModification("matching", matching.id, 1, 2)
            return original_commit(expected_versions, entities)

        engine.store.commit = commit_once_conflicting

        approved = call_with_retry(lambda: engine.approve_matching(matching.id, actor_id), sleep=lambda _: None)

        assert approved.status == "approved"
        assert len(attempts) == 2
