"""Vector operations: attributes of features intersecting a buffered region."""

from collections.abc import Sequence
from contextlib import closing
from typing import TYPE_CHECKING, Any

from dagster import get_dagster_logger

from hazard_statistics.errors import CancelledError, ReadFailedError, SchemaError
from hazard_statistics.models.models import IntersectsFilter, Query, ReferencedGeometry

if TYPE_CHECKING:
    from hazard_statistics.connectors.feature_source import FeatureSource
    from hazard_statistics.progress import ProgressListener

logger = get_dagster_logger()


def build_intersection_query(
    source: "FeatureSource", attributes: Sequence[str], buffer: ReferencedGeometry
) -> Query:
    """Build the query selecting features that intersect ``buffer``.

    The query CRS is the buffer's tag when present, otherwise the source's
    native geometry CRS; features are reprojected to it on read.

    :param source: Feature source
    :param attributes: Attribute names to return
    :param buffer: Buffered region of interest
    :returns: Query instance
    :raises SchemaError: If the source has no geometry attribute
    """
    descriptor = source.schema.geometry_descriptor
    if descriptor is None:
        raise SchemaError(f"Political layer {source.name} has no geometry property")

    request_crs = buffer.crs if buffer.crs is not None else descriptor.crs
    return Query(
        property_names=list(attributes),
        filter=IntersectsFilter(property_name=descriptor.name, geometry=buffer.geometry),
        crs=request_crs,
        crs_reproject=request_crs,
    )


def intersect_features(
    source: "FeatureSource",
    attributes: Sequence[str],
    buffer: ReferencedGeometry,
    monitor: "ProgressListener | None" = None,
) -> list[dict[str, Any]]:
    """Attribute records of the features intersecting a buffered region.

    Each record holds exactly the requested attributes, in request order;
    attributes a feature does not carry map to None. The feature iterator is
    closed on every exit path.

    :param source: Feature source
    :param attributes: Attribute names to return
    :param buffer: Buffered region of interest
    :param monitor: Optional progress listener checked for cancellation
    :returns: List of attribute records
    :raises SchemaError: If the source has no geometry attribute
    :raises ReadFailedError: If the query fails
    :raises CancelledError: If the monitor is canceled while iterating
    """
    query = build_intersection_query(source, attributes, buffer)

    try:
        iterator = source.get_features(query)
    except ReadFailedError:
        raise
    except OSError as e:
        raise ReadFailedError(f"Error querying political layer {source.name}: {e}") from e

    records: list[dict[str, Any]] = []
    with closing(iterator):
        for feature in iterator:
            if monitor is not None and monitor.is_canceled:
                raise CancelledError("Canceled while reading political features")
            records.append({name: feature.get_property(name) for name in attributes})

    logger.debug(f"{len(records)} features of {source.name} intersect the buffer")
    return records
