# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for engine configuration.
"""

import pytest
from unittest.mock import patch
from pydantic import ValidationError

from placement_engine.config import EngineConfig, load_config_from_env


class TestEngineConfig:
    """Test configuration defaults and lookups."""

    def test_defaults(self):
        """Test the default rates and limits."""
        config = EngineConfig()

        assert config.minimum_wage == 1320.0
        assert config.sibling_multiplier == 0.30
        assert config.special_needs_multiplier == 0.50
        assert config.budget_ceiling == 1_000_000.0
        assert config.expected_duration_days == 90

    def test_get_by_key(self):
        """Test settings are looked up by camelCase or snake_case key."""
        config = EngineConfig(minimum_wage=1412.0)

        assert config.get("minimumWage") == 1412.0
        assert config.get("minimum_wage") == 1412.0
        assert config.get("budgetCeiling") == 1_000_000.0
        assert config.get("unknownKey", "fallback") == "fallback"

    def test_camel_case_input(self):
        """Test settings can be given by alias."""
        config = EngineConfig(**{"siblingMultiplier": 0.25})

        assert config.sibling_multiplier == 0.25

    def test_cost_rates(self):
        """Test the rates snapshot copies the configured values."""
        rates = EngineConfig(minimum_wage=1500.0, special_needs_multiplier=0.6).cost_rates()

        assert rates.minimum_wage == 1500.0
        assert rates.special_needs_multiplier == 0.6
        assert rates.sibling_multiplier == 0.30

    def test_frozen(self):
        """Test configuration cannot change after construction."""
        config = EngineConfig()

        with pytest.raises(ValidationError):
            config.minimum_wage = 1.0

    def test_invalid_values(self):
        """Test non-positive wages are rejected."""
        with pytest.raises(ValidationError):
            EngineConfig(minimum_wage=0)


class TestLoadConfigFromEnv:
    """Test reading configuration from the environment."""

    def test_overrides(self):
        """Test environment variables override the defaults."""
        with patch.dict('os.environ', {
            'PLACEMENT_MINIMUM_WAGE': '1412',
            'PLACEMENT_SIBLING_MULTIPLIER': '0.25',
            'PLACEMENT_BUDGET_CEILING': '500000',
            'PLACEMENT_EXPECTED_DURATION_DAYS': '120'
        }):
            config = load_config_from_env()

        assert config.minimum_wage == 1412.0
        assert config.sibling_multiplier == 0.25
        assert config.budget_ceiling == 500000.0
        assert config.expected_duration_days == 120
        assert config.special_needs_multiplier == 0.50

    def test_invalid_environment_value(self):
        """Test a malformed variable fails validation."""
        with patch.dict('os.environ', {'PLACEMENT_CONFLICT_MAX_RETRIES': 'many'}):
            with pytest.raises(ValidationError):
                load_config_from_env()
