"""CRS service: CRS comparison, transform lookup and envelope/geometry transforms."""

from abc import ABC, abstractmethod
from typing import Any

import numpy as np
from affine import Affine
from pyproj import CRS, Transformer
from pyproj.exceptions import ProjError
from shapely.ops import transform as shp_transform

from hazard_statistics.config.constants import DEFAULT_ENVELOPE_DENSIFY_POINTS
from hazard_statistics.errors import (
    InvalidInputError,
    NonInvertibleError,
    TransformFailedError,
    TransformUnavailableError,
)
from hazard_statistics.models.models import ReferencedEnvelope, ReferencedGeometry, coerce_crs


class MathTransform(ABC):
    """Coordinate operation between a source and a target space.

    ``source_crs`` / ``target_crs`` are None for pixel (grid) space.
    """

    source_crs: CRS | None = None
    target_crs: CRS | None = None

    @property
    @abstractmethod
    def is_identity(self) -> bool: ...

    @abstractmethod
    def transform_points(self, xs: Any, ys: Any) -> tuple[np.ndarray, np.ndarray]:
        """Transform coordinate arrays, returning float arrays of the same shape."""

    @abstractmethod
    def inverse(self) -> "MathTransform": ...

    @abstractmethod
    def transform_bounds(self, bounds: tuple[float, float, float, float], densify_pts: int) -> tuple[float, ...]: ...


class AffineTransform(MathTransform):
    """Affine mapping between pixel space and world space.

    :param affine: Affine coefficients
    :param source_crs: CRS of the input side, None for grid space
    :param target_crs: CRS of the output side, None for grid space
    """

    def __init__(self, affine: Affine, source_crs: Any = None, target_crs: Any = None) -> None:
        self.affine = affine
        self.source_crs = coerce_crs(source_crs)
        self.target_crs = coerce_crs(target_crs)

    def __repr__(self) -> str:
        return f"AffineTransform({tuple(self.affine)[:6]!r})"

    @property
    def is_identity(self) -> bool:
        return bool(self.affine.is_identity)

    def transform_points(self, xs: Any, ys: Any) -> tuple[np.ndarray, np.ndarray]:
        a = self.affine
        xs = np.asarray(xs, dtype="float64")
        ys = np.asarray(ys, dtype="float64")
        return a.a * xs + a.b * ys + a.c, a.d * xs + a.e * ys + a.f

    def inverse(self) -> "AffineTransform":
        if self.affine.is_degenerate:
            raise NonInvertibleError(f"Affine transform {tuple(self.affine)[:6]} is degenerate")
        return AffineTransform(~self.affine, source_crs=self.target_crs, target_crs=self.source_crs)

    def transform_bounds(self, bounds: tuple[float, float, float, float], densify_pts: int) -> tuple[float, ...]:
        # Affine maps straight edges to straight edges, corners are enough.
        minx, miny, maxx, maxy = bounds
        xs, ys = self.transform_points([minx, minx, maxx, maxx], [miny, maxy, miny, maxy])
        return float(xs.min()), float(ys.min()), float(xs.max()), float(ys.max())


class CrsTransform(MathTransform):
    """Coordinate operation between two CRSs backed by a pyproj Transformer."""

    def __init__(self, source_crs: CRS, target_crs: CRS, lenient: bool = True) -> None:
        self.source_crs = source_crs
        self.target_crs = target_crs
        self.lenient = lenient
        try:
            self.transformer = Transformer.from_crs(source_crs, target_crs, always_xy=True, allow_ballpark=lenient)
        except ProjError as e:
            raise TransformUnavailableError(
                f"No coordinate operation from {source_crs.to_string()} to {target_crs.to_string()}"
            ) from e

    def __repr__(self) -> str:
        return f"CrsTransform({self.source_crs.to_string()} -> {self.target_crs.to_string()})"

    @property
    def is_identity(self) -> bool:
        return equals_ignore_metadata(self.source_crs, self.target_crs)

    def transform_points(self, xs: Any, ys: Any) -> tuple[np.ndarray, np.ndarray]:
        xs = np.asarray(xs, dtype="float64")
        ys = np.asarray(ys, dtype="float64")
        try:
            out_x, out_y = self.transformer.transform(xs, ys, errcheck=True)
        except ProjError as e:
            raise TransformFailedError(f"Error transforming coordinates with {self!r}") from e
        return np.asarray(out_x, dtype="float64"), np.asarray(out_y, dtype="float64")

    def inverse(self) -> "CrsTransform":
        return CrsTransform(self.target_crs, self.source_crs, lenient=self.lenient)

    def transform_bounds(self, bounds: tuple[float, float, float, float], densify_pts: int) -> tuple[float, ...]:
        try:
            return tuple(self.transformer.transform_bounds(*bounds, densify_pts=densify_pts, errcheck=True))
        except ProjError as e:
            raise TransformFailedError(f"Error transforming envelope {bounds} with {self!r}") from e


def as_crs(value: Any) -> CRS | None:
    """Coerce a CRS-like value to a pyproj CRS.

    :param value: EPSG code, authority string, WKT, rasterio or pyproj CRS
    :returns: pyproj CRS or None
    :raises InvalidInputError: If the value cannot be interpreted
    """
    try:
        return coerce_crs(value)
    except ValueError as e:
        raise InvalidInputError(str(e)) from e


def equals_ignore_metadata(a: Any, b: Any) -> bool:
    """Compare two CRSs structurally, ignoring names and identifiers.

    :param a: First CRS or None
    :param b: Second CRS or None
    :returns: True if both describe the same axes, units and datum
    """
    crs_a, crs_b = as_crs(a), as_crs(b)
    if crs_a is None or crs_b is None:
        return crs_a is crs_b
    return bool(crs_a.equals(crs_b))


def find_transform(source: Any, target: Any, lenient: bool = True) -> MathTransform:
    """Find a transform between two CRSs.

    Lenient lookups accept ballpark operations, e.g. datum shifts with missing
    Bursa-Wolf parameters.

    :param source: Source CRS
    :param target: Target CRS
    :param lenient: Allow ballpark operations
    :returns: Forward transform
    :raises TransformUnavailableError: If no operation exists
    """
    source_crs, target_crs = as_crs(source), as_crs(target)
    if source_crs is None or target_crs is None:
        raise TransformUnavailableError("Both source and target CRS are required to find a transform")
    return CrsTransform(source_crs, target_crs, lenient=lenient)


def is_identity(transform: MathTransform) -> bool:
    return transform.is_identity


def inverse(transform: MathTransform) -> MathTransform:
    """Invert a transform.

    :raises NonInvertibleError: If the transform has no inverse
    """
    return transform.inverse()


def transform_envelope(
    transform: MathTransform,
    envelope: ReferencedEnvelope,
    densify_pts: int = DEFAULT_ENVELOPE_DENSIFY_POINTS,
) -> ReferencedEnvelope:
    """Bounding box of a transformed envelope.

    CRS transforms densify each edge with ``densify_pts`` points so curved
    images of straight edges are covered.

    :param transform: Transform to apply
    :param envelope: Envelope in the transform's source space
    :param densify_pts: Points added per edge
    :returns: Envelope tagged with the transform's target CRS
    :raises TransformFailedError: If the result is not finite
    """
    bounds = transform.transform_bounds(envelope.bounds, densify_pts)
    if not np.all(np.isfinite(bounds)):
        raise TransformFailedError(f"Envelope {envelope.bounds} has no finite image under {transform!r}")
    return ReferencedEnvelope.from_bounds(bounds, crs=transform.target_crs)


def transform_geometry(transform: MathTransform, geometry: ReferencedGeometry) -> ReferencedGeometry:
    """Transform every vertex of a geometry.

    :param transform: Transform to apply
    :param geometry: Geometry in the transform's source space
    :returns: Geometry tagged with the transform's target CRS
    :raises TransformFailedError: If any vertex has no finite image
    """

    def _apply(x: Any, y: Any, z: Any = None) -> tuple[np.ndarray, np.ndarray]:
        out_x, out_y = transform.transform_points(x, y)
        if not (np.all(np.isfinite(out_x)) and np.all(np.isfinite(out_y))):
            raise TransformFailedError(f"Geometry has vertices with no finite image under {transform!r}")
        return out_x, out_y

    transformed = shp_transform(_apply, geometry.geometry)
    return ReferencedGeometry(geometry=transformed, crs=transform.target_crs)
