"""Geometry kernel: buffering, envelopes and CRS tagging of shapely geometries."""

from typing import Any

from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry

from hazard_statistics.config.constants import DEFAULT_BUFFER_QUAD_SEGS
from hazard_statistics.errors import InvalidInputError
from hazard_statistics.geospatial.crs_ops import as_crs
from hazard_statistics.models.models import ReferencedEnvelope, ReferencedGeometry


def _get_geom_dict(geom: dict[str, Any] | BaseGeometry) -> dict[str, Any]:
    """Convert geometry to dictionary format.

    :param geom: Geometry dict, GeoJSON Feature or shapely object
    :returns: Geometry dictionary
    """
    if isinstance(geom, BaseGeometry):
        return mapping(geom)
    if geom.get("type") == "Feature":
        if geom.get("geometry") is None:
            raise InvalidInputError("GeoJSON Feature is missing its geometry")
        return geom["geometry"]
    return geom


def as_referenced_geometry(value: Any, crs: Any = None) -> ReferencedGeometry:
    """Wrap a geometry-like value as a ReferencedGeometry.

    An existing tag wins over ``crs``.

    :param value: ReferencedGeometry, shapely geometry, GeoJSON geometry or Feature
    :param crs: CRS to tag an untagged value with
    :returns: ReferencedGeometry instance
    :raises InvalidInputError: If the value is not a geometry
    """
    if isinstance(value, ReferencedGeometry):
        if value.crs is None and crs is not None:
            return value.with_crs(as_crs(crs))
        return value
    if isinstance(value, BaseGeometry):
        return ReferencedGeometry(geometry=value, crs=as_crs(crs))
    if isinstance(value, dict):
        try:
            geometry = shape(_get_geom_dict(value))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidInputError(f"Invalid GeoJSON geometry: {e}") from e
        return ReferencedGeometry(geometry=geometry, crs=as_crs(crs))
    raise InvalidInputError(f"Unsupported geometry type {type(value).__name__}")


def buffer_geometry(
    geometry: ReferencedGeometry, radius: float, quad_segs: int = DEFAULT_BUFFER_QUAD_SEGS
) -> ReferencedGeometry:
    """Planar buffer of a geometry, keeping its CRS tag.

    A zero radius returns the input unchanged; a negative radius offsets
    inwards and may produce an empty polygon.

    :param geometry: Geometry to buffer
    :param radius: Offset distance in the geometry's CRS units
    :param quad_segs: Segments used to approximate a quarter circle
    :returns: Buffered geometry tagged like the input
    """
    if radius == 0:
        return geometry
    return geometry.with_geometry(geometry.geometry.buffer(radius, quad_segs=quad_segs))


def envelope_of(geometry: ReferencedGeometry) -> ReferencedEnvelope:
    """Axis-aligned envelope of a geometry, tagged like the geometry.

    Empty geometries produce an empty envelope.
    """
    if geometry.is_empty:
        return ReferencedEnvelope(minx=0.0, miny=0.0, maxx=-1.0, maxy=-1.0, crs=geometry.crs)
    return ReferencedEnvelope.from_bounds(geometry.geometry.bounds, crs=geometry.crs)


def tag_crs(geometry: ReferencedGeometry, crs: Any) -> ReferencedGeometry:
    return geometry.with_crs(as_crs(crs))


def crs_of(geometry: ReferencedGeometry) -> Any:
    return geometry.crs
