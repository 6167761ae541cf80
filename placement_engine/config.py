# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Engine configuration.

Rates and limits are read from environment variables in
`load_config_from_env` and validated by a pydantic model. Services get the
config injected; nothing reads the environment at import time.
"""

import os
import logging
from typing import Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models.entities import CostRates

logger = logging.getLogger(__name__)


class EngineConfig(BaseModel):
    """Rates, budget ceiling and store limits used by the engine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    minimum_wage: float = Field(default=1320.0, gt=0, description="Monthly minimum wage")
    sibling_multiplier: float = Field(default=0.30, ge=0, description="Extra share per sibling")
    special_needs_multiplier: float = Field(default=0.50, ge=0, description="Extra share for special needs")
    budget_ceiling: float = Field(default=1_000_000.0, ge=0, description="Fiscal-year budget ceiling")
    expected_duration_days: int = Field(default=90, gt=0, description="Expected approximation length")
    store_lock_timeout_seconds: float = Field(default=5.0, gt=0)
    conflict_max_retries: int = Field(default=3, ge=0)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a setting by its camelCase key, e.g. ``get("minimumWage")``.

        Snake_case field names are accepted too.
        """
        for name, field in type(self).model_fields.items():
            if key in (name, field.alias):
                return getattr(self, name)
        return default

    def cost_rates(self) -> CostRates:
        """Rates snapshot stored on new placements."""
        return CostRates(
            minimum_wage=self.minimum_wage,
            special_needs_multiplier=self.special_needs_multiplier,
            sibling_multiplier=self.sibling_multiplier
        )


def load_config_from_env() -> EngineConfig:
    """
    Build the engine config from environment variables.

    Unset variables keep the model defaults.
    """
    env_map = {
        "minimum_wage": "PLACEMENT_MINIMUM_WAGE",
        "sibling_multiplier": "PLACEMENT_SIBLING_MULTIPLIER",
        "special_needs_multiplier": "PLACEMENT_SPECIAL_NEEDS_MULTIPLIER",
        "budget_ceiling": "PLACEMENT_BUDGET_CEILING",
        "expected_duration_days": "PLACEMENT_EXPECTED_DURATION_DAYS",
        "store_lock_timeout_seconds": "PLACEMENT_STORE_LOCK_TIMEOUT",
        "conflict_max_retries": "PLACEMENT_CONFLICT_MAX_RETRIES",
    }
    values = {field: os.environ[var] for field, var in env_map.items() if os.getenv(var)}

    config = EngineConfig(**values)
    logger.info(
        "Engine configuration loaded",
        extra={"extra_fields": {"overrides": sorted(values.keys())}}
    )
    return config
