"""Raster operations: selecting and reading the minimal sub-grid covering a request."""

import math
from typing import TYPE_CHECKING

from dagster import get_dagster_logger
from rasterio.windows import Window

from hazard_statistics.config.constants import (
    DEFAULT_ENVELOPE_DENSIFY_POINTS,
    DEFAULT_LENIENT_TRANSFORMS,
    GRID_SNAP_TOLERANCE,
)
from hazard_statistics.errors import ReadFailedError
from hazard_statistics.geospatial.crs_ops import (
    equals_ignore_metadata,
    find_transform,
    inverse,
    is_identity,
    transform_envelope,
)
from hazard_statistics.models.models import (
    Coverage,
    GridGeometry,
    PixelAnchor,
    ReferencedEnvelope,
    ViewType,
)

if TYPE_CHECKING:
    from hazard_statistics.connectors.raster_reader import RasterReader

logger = get_dagster_logger()


def _snap_floor(value: float) -> int:
    nearest = round(value)
    if abs(value - nearest) <= GRID_SNAP_TOLERANCE:
        return int(nearest)
    return math.floor(value)


def _snap_ceil(value: float) -> int:
    nearest = round(value)
    if abs(value - nearest) <= GRID_SNAP_TOLERANCE:
        return int(nearest)
    return math.ceil(value)


def _snap_span(low: float, high: float) -> tuple[int, int]:
    """Integer pixel span containing [low, high], never narrower than one pixel."""
    start, end = _snap_floor(low), _snap_ceil(high)
    if end <= start:
        # Spans thinner than the snap tolerance collapse onto one edge.
        start, end = math.floor(low), math.ceil(high)
    if end <= start:
        end = start + 1
    return start, end


def bounding_grid_window(grid_envelope: ReferencedEnvelope) -> Window:
    """Smallest pixel-aligned window containing an envelope in grid coordinates.

    :param grid_envelope: Envelope in pixel space
    :returns: Integer window, at least one pixel wide and high
    """
    col_min, col_max = _snap_span(grid_envelope.minx, grid_envelope.maxx)
    row_min, row_max = _snap_span(grid_envelope.miny, grid_envelope.maxy)
    return Window(col_min, row_min, col_max - col_min, row_max - row_min)


def reproject_envelope(
    envelope: ReferencedEnvelope,
    target_crs: object,
    lenient: bool = DEFAULT_LENIENT_TRANSFORMS,
    densify_pts: int = DEFAULT_ENVELOPE_DENSIFY_POINTS,
) -> ReferencedEnvelope:
    """Express an envelope in another CRS.

    Untagged envelopes, envelopes already in ``target_crs`` and identity
    transforms are returned unchanged.

    :param envelope: Envelope to reproject
    :param target_crs: Target CRS
    :param lenient: Accept ballpark datum shifts
    :param densify_pts: Points added per edge
    :returns: Envelope in ``target_crs`` (or unchanged)
    """
    if envelope.crs is None or target_crs is None or equals_ignore_metadata(envelope.crs, target_crs):
        return envelope
    transform = find_transform(envelope.crs, target_crs, lenient=lenient)
    if is_identity(transform):
        return envelope
    return transform_envelope(transform, envelope, densify_pts=densify_pts)


def select_grid_geometry(
    reader: "RasterReader",
    request_envelope: ReferencedEnvelope,
    lenient: bool = DEFAULT_LENIENT_TRANSFORMS,
    densify_pts: int = DEFAULT_ENVELOPE_DENSIFY_POINTS,
) -> GridGeometry | None:
    """Minimal grid geometry of ``reader`` covering a request envelope.

    The request is reprojected to the raster CRS, intersected with the
    raster's extent and converted to the smallest integer pixel rectangle
    containing it, using the corner-anchored grid-to-world transform.

    :param reader: Raster reader
    :param request_envelope: Request envelope in any CRS
    :param lenient: Accept ballpark datum shifts
    :param densify_pts: Points added per edge when reprojecting
    :returns: GridGeometry, or None when the request does not intersect the raster
    """
    envelope = reproject_envelope(request_envelope, reader.crs, lenient=lenient, densify_pts=densify_pts)

    envelope = envelope.intersection(reader.original_envelope)
    if envelope.is_empty:
        return None

    envelope = envelope.with_crs(reader.crs)

    world_to_grid = inverse(reader.original_grid_to_world(PixelAnchor.CELL_CORNER))
    window = bounding_grid_window(transform_envelope(world_to_grid, envelope))
    logger.debug(f"Request {request_envelope.bounds} selects window {window} of {reader.name}")

    return GridGeometry(window=window, envelope=envelope)


def read_layer_coverage(
    reader: "RasterReader",
    request_envelope: ReferencedEnvelope,
    lenient: bool = DEFAULT_LENIENT_TRANSFORMS,
    densify_pts: int = DEFAULT_ENVELOPE_DENSIFY_POINTS,
) -> Coverage | None:
    """Read the geophysical sub-grid of a raster covering a request envelope.

    :param reader: Raster reader
    :param request_envelope: Request envelope in any CRS
    :param lenient: Accept ballpark datum shifts
    :param densify_pts: Points added per edge when reprojecting
    :returns: Geophysical coverage, or None when the request does not intersect the raster
    :raises ReadFailedError: If the reader returns nothing for a non-empty request
    """
    grid_geometry = select_grid_geometry(reader, request_envelope, lenient=lenient, densify_pts=densify_pts)
    if grid_geometry is None:
        return None

    coverage = reader.read(grid_geometry)
    if coverage is None:
        raise ReadFailedError(f"The requested coverage could not be read from {reader.name}")

    return coverage.view(ViewType.GEOPHYSICS)
