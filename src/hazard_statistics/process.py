"""Hazard statistics operator: per-layer raster statistics and political features around a buffered region."""

import math
import numbers
from collections.abc import Mapping, Sequence
from typing import Any

from dagster import get_dagster_logger

from hazard_statistics.config.constants import (
    DATALAYERS_KEY,
    GEOMETRY_KEY,
    POLITICAL_ATTRIBUTES_KEY,
    POLITICAL_LAYER_KEY,
    RADIUS_KEY,
)
from hazard_statistics.connectors.feature_source import FeatureSource
from hazard_statistics.connectors.raster_reader import RasterReader
from hazard_statistics.connectors.settings import SettingsResource
from hazard_statistics.errors import CancelledError, InvalidInputError, ProcessError
from hazard_statistics.geospatial.crs_ops import equals_ignore_metadata, find_transform, transform_geometry
from hazard_statistics.geospatial.geometry_ops import as_referenced_geometry, buffer_geometry, envelope_of
from hazard_statistics.geospatial.raster_ops import read_layer_coverage
from hazard_statistics.geospatial.stats_ops import compute_statistics
from hazard_statistics.geospatial.vector_ops import intersect_features
from hazard_statistics.models.models import (
    HazardStatisticsResult,
    LayerStatistics,
    ReferencedEnvelope,
    ReferencedGeometry,
)
from hazard_statistics.progress import ProgressListener

logger = get_dagster_logger()


def _check_radius(radius: Any) -> float:
    """Validate the buffer radius.

    :param radius: Raw radius input
    :returns: Radius as float
    """
    if radius is None:
        raise InvalidInputError("input radius is required")
    if isinstance(radius, bool) or not isinstance(radius, numbers.Real):
        raise InvalidInputError(f"input radius must be a number, got {type(radius).__name__}")
    value = float(radius)
    if not math.isfinite(value) or value < 0:
        raise InvalidInputError(f"input radius must be a finite non-negative number, got {value}")
    return value


def _check_datalayers(datalayers: Any) -> list[RasterReader]:
    """Validate the raster layer list.

    :param datalayers: Raw data layers input
    :returns: List of raster readers, in input order
    """
    if datalayers is None or isinstance(datalayers, (str, bytes)) or not isinstance(datalayers, Sequence):
        raise InvalidInputError("input data layer is required")
    if len(datalayers) == 0:
        raise InvalidInputError("input data layer is required")
    for index, layer in enumerate(datalayers):
        if not isinstance(layer, RasterReader):
            raise InvalidInputError(f"data layer {index} is not a raster reader: {type(layer).__name__}")
    return list(datalayers)


def _check_political_inputs(
    political_layer: Any, political_attributes: Any
) -> tuple[FeatureSource | None, list[str]]:
    """Validate the optional political layer and its attribute list.

    :param political_layer: Raw political layer input
    :param political_attributes: Raw attribute names input
    :returns: Tuple of (feature source or None, attribute names)
    """
    if political_layer is None:
        return None, []
    if not isinstance(political_layer, FeatureSource):
        raise InvalidInputError(f"political layer is not a feature source: {type(political_layer).__name__}")
    if (
        political_attributes is None
        or isinstance(political_attributes, (str, bytes))
        or not isinstance(political_attributes, Sequence)
        or len(political_attributes) == 0
    ):
        raise InvalidInputError("Required return attributes shall be specified for the political layer")
    return political_layer, [str(name) for name in political_attributes]


def _check_canceled(monitor: ProgressListener, stage: str) -> None:
    if monitor.is_canceled:
        raise CancelledError(f"Hazard statistics canceled {stage}")


class HazardStatisticsProcess:
    """Hazard statistics operator.

    Buffers a region of interest, summarizes every raster layer over the
    buffer's envelope and lists the political features the buffer touches.

    :param settings: Geometric settings, defaults to SettingsResource()
    """

    def __init__(self, settings: SettingsResource | None = None) -> None:
        self.settings = settings if settings is not None else SettingsResource()

    def execute(self, inputs: Mapping[str, Any], monitor: ProgressListener | None = None) -> dict[str, Any]:
        """Run the operator.

        :param inputs: Mapping with geometry, radius, datalayers and optional political_layer / political_attributes
        :param monitor: Optional progress listener
        :returns: Mapping with statistics, political and buffer
        :raises ProcessError: Wrapping the original cause of any failure
        """
        try:
            return self.run(inputs, monitor=monitor).to_dict()
        except ProcessError:
            raise
        except Exception as e:
            logger.error(f"Hazard statistics failed: {type(e).__name__}: {e}")
            raise ProcessError(f"Hazard statistics failed: {e}", cause=e) from e

    def run(self, inputs: Mapping[str, Any], monitor: ProgressListener | None = None) -> HazardStatisticsResult:
        """Run the operator, raising typed errors unwrapped.

        :param inputs: Operator inputs, see ``execute``
        :param monitor: Optional progress listener
        :returns: HazardStatisticsResult instance
        """
        if monitor is None:
            monitor = ProgressListener()

        geometry_input = inputs.get(GEOMETRY_KEY)
        if geometry_input is None:
            raise InvalidInputError("input geometry is required")
        geometry = as_referenced_geometry(geometry_input)
        radius = _check_radius(inputs.get(RADIUS_KEY))
        datalayers = _check_datalayers(inputs.get(DATALAYERS_KEY))
        political_layer, political_attributes = _check_political_inputs(
            inputs.get(POLITICAL_LAYER_KEY), inputs.get(POLITICAL_ATTRIBUTES_KEY)
        )

        monitor.started()
        buffer = buffer_geometry(geometry, radius, quad_segs=self.settings.buffer_quad_segs)
        steps = len(datalayers) + (1 if political_layer is not None else 0)

        statistics: list[LayerStatistics | None] = []
        for index, layer in enumerate(datalayers):
            _check_canceled(monitor, f"before raster layer {index} ({layer.name})")
            statistics.append(self._gather_layer_statistics(layer, buffer))
            monitor.progress(100.0 * (index + 1) / steps)

        political: list[dict[str, Any]] = []
        if political_layer is not None:
            _check_canceled(monitor, f"before political layer {political_layer.name}")
            political = intersect_features(political_layer, political_attributes, buffer, monitor=monitor)

        monitor.complete()
        logger.info(
            f"Hazard statistics computed for {len(datalayers)} layer(s), "
            f"{sum(stats is None for stats in statistics)} without intersection, "
            f"{len(political)} political feature(s)"
        )
        return HazardStatisticsResult(statistics=statistics, political=political, buffer=buffer)

    def _request_envelope(self, buffer: ReferencedGeometry, layer: RasterReader) -> ReferencedEnvelope:
        """Envelope of the buffer expressed in the layer's CRS.

        Tagged buffers in another CRS are reprojected vertex by vertex before
        taking the envelope; untagged buffers are assumed to be in the layer CRS.

        :param buffer: Buffered region of interest
        :param layer: Raster layer
        :returns: Request envelope
        """
        if buffer.crs is None or layer.crs is None or equals_ignore_metadata(buffer.crs, layer.crs):
            return envelope_of(buffer)
        transform = find_transform(buffer.crs, layer.crs, lenient=self.settings.lenient_transforms)
        if transform.is_identity:
            return envelope_of(buffer)
        return envelope_of(transform_geometry(transform, buffer))

    def _gather_layer_statistics(self, layer: RasterReader, buffer: ReferencedGeometry) -> LayerStatistics | None:
        """Statistics of one raster layer over the buffer's envelope.

        :param layer: Raster layer
        :param buffer: Buffered region of interest
        :returns: LayerStatistics, or None when the buffer does not intersect the layer
        """
        request_envelope = self._request_envelope(buffer, layer)
        coverage = read_layer_coverage(
            layer,
            request_envelope,
            lenient=self.settings.lenient_transforms,
            densify_pts=self.settings.envelope_densify_points,
        )
        if coverage is None:
            logger.warning(f"Buffer does not intersect raster layer {layer.name}, returning empty statistics")
            return None

        stats = compute_statistics(coverage)
        logger.debug(f"Statistics for {layer.name}: {stats.to_dict()}")
        return stats


def execute(
    inputs: Mapping[str, Any],
    monitor: ProgressListener | None = None,
    settings: SettingsResource | None = None,
) -> dict[str, Any]:
    """Run the hazard statistics operator with optional settings.

    :param inputs: Operator inputs, see ``HazardStatisticsProcess.execute``
    :param monitor: Optional progress listener
    :param settings: Optional settings, defaults to SettingsResource()
    :returns: Mapping with statistics, political and buffer
    :raises ProcessError: Wrapping the original cause of any failure
    """
    return HazardStatisticsProcess(settings=settings).execute(inputs, monitor=monitor)
