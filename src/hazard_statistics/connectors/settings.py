"""Settings resource for managing operator configuration from environment variables."""

import os
from typing import Any

from dagster import ConfigurableResource

from hazard_statistics.config.constants import (
    DEFAULT_BUFFER_QUAD_SEGS,
    DEFAULT_ENVELOPE_DENSIFY_POINTS,
    DEFAULT_LENIENT_TRANSFORMS,
    SETTINGS_ENV_PREFIX,
)


class SettingsResource(ConfigurableResource[Any]):
    """Geometric settings of the hazard statistics operator."""

    buffer_quad_segs: int = DEFAULT_BUFFER_QUAD_SEGS
    envelope_densify_points: int = DEFAULT_ENVELOPE_DENSIFY_POINTS
    lenient_transforms: bool = DEFAULT_LENIENT_TRANSFORMS

    @staticmethod
    def create(swallow_errors: bool = False) -> "SettingsResource":
        """Create SettingsResource from environment variables.

        Each field reads ``HAZARD_STATS_<FIELD>``; unset variables keep the default.

        :param swallow_errors: If True, ignore validation errors
        :returns: SettingsResource instance
        """
        env_values: dict[str, Any] = {}
        for attr_name, field in SettingsResource.model_fields.items():
            raw = os.environ.get(f"{SETTINGS_ENV_PREFIX}{attr_name.upper()}")
            if raw is None or not raw.strip():
                continue
            if isinstance(field.default, bool):
                env_values[attr_name] = raw.strip().lower() in ("true", "1", "yes", "y", "on")
            elif isinstance(field.default, int):
                env_values[attr_name] = int(raw)
            else:
                env_values[attr_name] = raw

        settings = SettingsResource(**env_values)
        try:
            settings.validate_settings()
        except ValueError:
            if not swallow_errors:
                raise
        return settings

    def validate_settings(self) -> None:
        """Validate numeric settings are positive."""
        invalid = [
            f"{SETTINGS_ENV_PREFIX}{name.upper()}={getattr(self, name)}"
            for name in ("buffer_quad_segs", "envelope_densify_points")
            if getattr(self, name) < 1
        ]
        if invalid:
            raise ValueError(f"Settings must be positive: {', '.join(invalid)}")
