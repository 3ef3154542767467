from pathlib import Path

import numpy as np
import pytest
import rasterio
from affine import Affine
from numpy.typing import NDArray
from pyproj import CRS
from rasterio.windows import Window

from hazard_statistics.connectors.raster_reader import (
    InMemoryRasterReader,
    MosaicRasterReader,
    RasterioRasterReader,
)
from hazard_statistics.errors import InvalidInputError, ReadFailedError
from hazard_statistics.models.models import (
    GridGeometry,
    PixelAnchor,
    ReferencedEnvelope,
    SampleDimension,
    ViewType,
)


def _write_geotiff(
    path: Path,
    data: NDArray[np.generic],
    crs: str = "EPSG:4326",
    transform: Affine | None = None,
    nodata: float | None = None,
    scale: float | None = None,
    offset: float | None = None,
) -> None:
    """
    Helper function to write a single-band GeoTIFF file for testing.

    Args:
      path: Path to write the GeoTIFF
      data: NumPy array with raster data
      crs: Coordinate reference system
      transform: Affine transform (defaults to simple scale)
      nodata: Optional no-data value
      scale: Optional raw-to-physical scale
      offset: Optional raw-to-physical offset
    """
    height, width = data.shape
    transform = transform or Affine.translation(0, 0) * Affine.scale(1, -1)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
        if scale is not None:
            dst.scales = (scale,)
        if offset is not None:
            dst.offsets = (offset,)


def _grid(col: int, row: int, width: int, height: int) -> GridGeometry:
    return GridGeometry(
        window=Window(col, row, width, height),
        envelope=ReferencedEnvelope(minx=0, miny=0, maxx=1, maxy=1),
    )


def test_rasterio_reader_exposes_grid_metadata(tmp_path: Path) -> None:
    """
    Test that the file-backed reader reports CRS, envelope and transforms.
    """
    tif_path = tmp_path / "hazard.tif"
    _write_geotiff(tif_path, np.zeros((4, 3), dtype="float32"), transform=Affine(2, 0, 10, 0, -2, 20))

    reader = RasterioRasterReader(tif_path)

    assert reader.name == "hazard"
    assert reader.crs == CRS.from_epsg(4326)
    assert (reader.width, reader.height, reader.band_count) == (3, 4, 1)
    assert reader.original_envelope.bounds == (10.0, 12.0, 16.0, 20.0)
    corner = reader.original_grid_to_world(PixelAnchor.CELL_CORNER).affine
    center = reader.original_grid_to_world(PixelAnchor.CELL_CENTER).affine
    assert corner * (0, 0) == (10.0, 20.0)
    assert center * (0, 0) == (11.0, 19.0)


def test_rasterio_reader_reads_window_with_nodata_and_scaling(tmp_path: Path) -> None:
    """
    Test windowed reads honour the file's no-data value, scale and offset.

    The raw value -9999 is declared no-data and masked; the remaining raw
    samples convert to physical units as raw * 0.5 + 10.
    """
    data = np.array([[1, 2, 3], [-9999, 4, 5]], dtype="int16")
    tif_path = tmp_path / "scaled.tif"
    _write_geotiff(tif_path, data, nodata=-9999, scale=0.5, offset=10.0)

    reader = RasterioRasterReader(tif_path)
    assert reader.sample_dimensions[0].nodata == [-9999.0]
    assert reader.sample_dimensions[0].scale == 0.5
    assert reader.sample_dimensions[0].offset == 10.0

    coverage = reader.read(_grid(0, 0, 2, 2))
    assert coverage is not None
    assert coverage.view_type == ViewType.RAW
    assert coverage.shape == (2, 2)
    assert coverage.transform == Affine.translation(0, 0) * Affine.scale(1, -1)

    geophysics = coverage.view(ViewType.GEOPHYSICS)
    np.testing.assert_array_equal(np.ma.getmaskarray(geophysics.data[0]), [[False, False], [True, False]])
    np.testing.assert_allclose(np.ma.compressed(geophysics.data[0]), [10.5, 11.0, 12.0])


def test_rasterio_reader_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ReadFailedError):
        RasterioRasterReader(tmp_path / "missing.tif")


def test_in_memory_reader_clamps_window_to_grid() -> None:
    """
    Test that windows reaching past the raster edge are clipped.

    A window entirely outside the grid reads nothing.
    """
    data = np.arange(12, dtype="float64").reshape(3, 4)
    reader = InMemoryRasterReader(data, Affine(1, 0, 0, 0, -1, 3), crs="EPSG:4326")

    coverage = reader.read(_grid(2, 1, 5, 5))
    assert coverage is not None
    np.testing.assert_array_equal(coverage.data[0], [[6, 7], [10, 11]])
    assert coverage.transform * (0, 0) == (2.0, 2.0)

    assert reader.read(_grid(10, 10, 2, 2)) is None


def test_in_memory_reader_rejects_bad_shape() -> None:
    with pytest.raises(InvalidInputError):
        InMemoryRasterReader(np.zeros(5), Affine.identity())


def test_mosaic_reader_merges_tiles() -> None:
    """
    Test that a mosaic presents adjacent tiles as one grid.

    The west tile holds raw values scaled by its sample dimension; the
    mosaic pastes geophysical values and leaves uncovered cells masked.
    """
    west = InMemoryRasterReader(
        np.array([[1, 2], [3, 4]], dtype="int16"),
        Affine(1, 0, 0, 0, -1, 2),
        crs="EPSG:3857",
        sample_dimensions=[SampleDimension(scale=10.0)],
        name="west",
    )
    east = InMemoryRasterReader(
        np.array([[50.0, 60.0]]),
        Affine(1, 0, 2, 0, -1, 2),
        crs="EPSG:3857",
        name="east",
    )

    mosaic = MosaicRasterReader([west, east])
    assert mosaic.original_envelope.bounds == (0.0, 0.0, 4.0, 2.0)
    assert (mosaic.width, mosaic.height) == (4, 2)

    coverage = mosaic.read(
        GridGeometry(window=Window(0, 0, 4, 2), envelope=mosaic.original_envelope)
    )
    assert coverage is not None
    assert coverage.view_type == ViewType.GEOPHYSICS
    band = coverage.data[0]
    np.testing.assert_array_equal(np.ma.getmaskarray(band), [[False, False, False, False], [False, False, True, True]])
    np.testing.assert_allclose(band.compressed(), [10.0, 20.0, 50.0, 60.0, 30.0, 40.0])


def test_mosaic_first_reader_wins_on_overlap() -> None:
    first = InMemoryRasterReader(np.full((2, 2), 1.0), Affine(1, 0, 0, 0, -1, 2), crs="EPSG:3857")
    second = InMemoryRasterReader(np.full((2, 2), 2.0), Affine(1, 0, 1, 0, -1, 2), crs="EPSG:3857")

    mosaic = MosaicRasterReader([first, second])
    coverage = mosaic.read(GridGeometry(window=Window(0, 0, 3, 2), envelope=mosaic.original_envelope))

    assert coverage is not None
    np.testing.assert_allclose(coverage.data[0], [[1.0, 1.0, 2.0], [1.0, 1.0, 2.0]])


def test_mosaic_rejects_mixed_crs() -> None:
    first = InMemoryRasterReader(np.zeros((2, 2)), Affine(1, 0, 0, 0, -1, 2), crs="EPSG:3857")
    second = InMemoryRasterReader(np.zeros((2, 2)), Affine(1, 0, 2, 0, -1, 2), crs="EPSG:4326")

    with pytest.raises(InvalidInputError):
        MosaicRasterReader([first, second])


def test_mosaic_rejects_member_off_the_pixel_grid() -> None:
    """
    Test that a member shifted by a fraction of a pixel cannot join a mosaic.
    """
    first = InMemoryRasterReader(np.zeros((2, 2)), Affine(1, 0, 0, 0, -1, 2), crs="EPSG:3857", name="a")
    shifted = InMemoryRasterReader(np.zeros((2, 2)), Affine(1, 0, 2.4, 0, -1, 2), crs="EPSG:3857", name="b")

    with pytest.raises(InvalidInputError, match="not aligned"):
        MosaicRasterReader([first, shifted])
