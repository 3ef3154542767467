"""Hazard statistics resource for Dagster jobs."""

from typing import Any

from dagster import ConfigurableResource

from hazard_statistics.connectors.settings import SettingsResource
from hazard_statistics.process import HazardStatisticsProcess


class HazardStatisticsResource(ConfigurableResource[Any]):
    """Resource creating configured hazard statistics operators."""

    settings: SettingsResource

    def create_process(self) -> HazardStatisticsProcess:
        """Create hazard statistics operator.

        :returns: Operator using this resource's settings
        """
        return HazardStatisticsProcess(settings=self.settings)
