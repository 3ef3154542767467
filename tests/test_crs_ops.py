import math

import pytest
from affine import Affine
from pyproj import CRS
from shapely.geometry import Point, box

from hazard_statistics.errors import (
    InvalidInputError,
    NonInvertibleError,
    TransformFailedError,
    TransformUnavailableError,
)
from hazard_statistics.geospatial import crs_ops
from hazard_statistics.models.models import ReferencedEnvelope, ReferencedGeometry


def test_equals_ignore_metadata_ignores_names_and_identifiers() -> None:
    """
    Test that CRS comparison is structural.

    A renamed copy of WGS 84 compares equal to EPSG:4326, while a
    projected CRS does not.
    """
    wgs84 = CRS.from_epsg(4326)
    renamed = CRS.from_wkt(wgs84.to_wkt().replace('GEOGCRS["WGS 84"', 'GEOGCRS["Renamed WGS 84"', 1))

    assert renamed.name != wgs84.name
    assert crs_ops.equals_ignore_metadata(wgs84, renamed)
    assert crs_ops.equals_ignore_metadata("EPSG:4326", wgs84)
    assert not crs_ops.equals_ignore_metadata("EPSG:4326", "EPSG:3857")


def test_equals_ignore_metadata_handles_missing_crs() -> None:
    assert crs_ops.equals_ignore_metadata(None, None)
    assert not crs_ops.equals_ignore_metadata(None, "EPSG:4326")


def test_as_crs_rejects_garbage() -> None:
    with pytest.raises(InvalidInputError):
        crs_ops.as_crs("not a crs")


def test_find_transform_and_transform_envelope() -> None:
    """
    Test envelope reprojection from geographic to Web Mercator.

    The result is tagged with the target CRS and matches the spherical
    Mercator formulas.
    """
    transform = crs_ops.find_transform("EPSG:4326", "EPSG:3857")
    assert not crs_ops.is_identity(transform)

    envelope = ReferencedEnvelope(minx=0, miny=0, maxx=1, maxy=1, crs="EPSG:4326")
    result = crs_ops.transform_envelope(transform, envelope)

    expected_x = 6378137.0 * math.radians(1)
    expected_y = 6378137.0 * math.log(math.tan(math.pi / 4 + math.radians(1) / 2))
    assert result.crs == CRS.from_epsg(3857)
    assert result.minx == pytest.approx(0.0, abs=1e-6)
    assert result.miny == pytest.approx(0.0, abs=1e-6)
    assert result.maxx == pytest.approx(expected_x, rel=1e-7)
    assert result.maxy == pytest.approx(expected_y, rel=1e-7)


def test_find_transform_between_equal_crs_is_identity() -> None:
    transform = crs_ops.find_transform("EPSG:4326", CRS.from_epsg(4326))
    assert crs_ops.is_identity(transform)


def test_find_transform_requires_both_crs() -> None:
    with pytest.raises(TransformUnavailableError):
        crs_ops.find_transform(None, "EPSG:4326")


def test_transform_geometry_retags_geometry() -> None:
    """
    Test vertex-wise geometry transforms.

    The transformed geometry carries the target CRS and the inverse
    transform brings it back.
    """
    geometry = ReferencedGeometry(geometry=Point(10, 45), crs="EPSG:4326")
    transform = crs_ops.find_transform("EPSG:4326", "EPSG:3857")

    projected = crs_ops.transform_geometry(transform, geometry)
    assert projected.crs == CRS.from_epsg(3857)
    assert projected.geometry.x == pytest.approx(1113194.9079, abs=1e-3)

    back = crs_ops.transform_geometry(crs_ops.inverse(transform), projected)
    assert back.crs == CRS.from_epsg(4326)
    assert back.geometry.x == pytest.approx(10.0, abs=1e-9)
    assert back.geometry.y == pytest.approx(45.0, abs=1e-9)


def test_transform_geometry_fails_on_singularity() -> None:
    """
    Test that vertices with no finite image raise TransformFailedError.

    The pole has no image in Web Mercator.
    """
    geometry = ReferencedGeometry(geometry=Point(0, 90), crs="EPSG:4326")
    transform = crs_ops.find_transform("EPSG:4326", "EPSG:3857")

    with pytest.raises(TransformFailedError):
        crs_ops.transform_geometry(transform, geometry)


def test_affine_envelope_transform_and_inverse() -> None:
    """
    Test grid-to-world affine transforms.

    A north-up transform flips the row axis; its inverse maps the world
    envelope back to the pixel rectangle.
    """
    grid_to_world = crs_ops.AffineTransform(Affine(2.0, 0, 100.0, 0, -2.0, 50.0), target_crs="EPSG:3857")
    grid = ReferencedEnvelope(minx=0, miny=0, maxx=3, maxy=4)

    world = crs_ops.transform_envelope(grid_to_world, grid)
    assert world.bounds == (100.0, 42.0, 106.0, 50.0)
    assert world.crs == CRS.from_epsg(3857)

    world_to_grid = crs_ops.inverse(grid_to_world)
    assert world_to_grid.target_crs is None
    assert crs_ops.transform_envelope(world_to_grid, world).bounds == pytest.approx((0.0, 0.0, 3.0, 4.0))


def test_inverse_of_degenerate_affine_raises() -> None:
    degenerate = crs_ops.AffineTransform(Affine(1.0, 2.0, 0.0, 2.0, 4.0, 0.0))
    with pytest.raises(NonInvertibleError):
        crs_ops.inverse(degenerate)


def test_transform_geometry_with_affine_keeps_shape() -> None:
    geometry = ReferencedGeometry(geometry=box(0, 0, 1, 1))
    shifted = crs_ops.transform_geometry(crs_ops.AffineTransform(Affine.translation(5, 5)), geometry)
    assert shifted.geometry.bounds == (5.0, 5.0, 6.0, 6.0)
    assert shifted.crs is None
