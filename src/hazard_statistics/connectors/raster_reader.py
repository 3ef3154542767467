"""Raster reader connectors: file-backed, in-memory and mosaicked coverage sources."""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np
import rasterio
from affine import Affine
from dagster import get_dagster_logger
from pyproj import CRS
from rasterio.errors import RasterioError
from rasterio.windows import Window

from hazard_statistics.config.constants import GRID_SNAP_TOLERANCE
from hazard_statistics.errors import InvalidInputError, ReadFailedError
from hazard_statistics.geospatial.crs_ops import AffineTransform, as_crs, equals_ignore_metadata
from hazard_statistics.geospatial.raster_ops import select_grid_geometry
from hazard_statistics.models.models import (
    Coverage,
    GridGeometry,
    PixelAnchor,
    ReferencedEnvelope,
    SampleDimension,
    ViewType,
)

logger = get_dagster_logger()


class RasterReader(ABC):
    """Grid coverage source.

    Subclasses describe a north-up or rotated grid through its native CRS,
    its size and its corner-anchored affine grid-to-world transform, and read
    sub-grids described by a GridGeometry.
    """

    name: str = "raster"

    @property
    @abstractmethod
    def crs(self) -> CRS | None: ...

    @property
    @abstractmethod
    def width(self) -> int: ...

    @property
    @abstractmethod
    def height(self) -> int: ...

    @property
    @abstractmethod
    def band_count(self) -> int: ...

    @property
    @abstractmethod
    def transform(self) -> Affine:
        """Corner-anchored affine grid-to-world transform."""

    @abstractmethod
    def read(self, grid_geometry: GridGeometry) -> Coverage | None:
        """Read the cells covered by ``grid_geometry``.

        :param grid_geometry: Pixel rectangle to read, in this raster's grid
        :returns: Coverage in raw view, or None when nothing could be read
        """

    @property
    def original_envelope(self) -> ReferencedEnvelope:
        corners = AffineTransform(self.transform).transform_bounds((0, 0, self.width, self.height), 0)
        return ReferencedEnvelope.from_bounds(corners, crs=self.crs)

    def original_grid_to_world(self, anchor: PixelAnchor = PixelAnchor.CELL_CORNER) -> AffineTransform:
        """Grid-to-world transform of the full raster.

        :param anchor: Pixel location integer indices map to
        :returns: AffineTransform from grid space to the raster CRS
        """
        affine = self.transform
        if anchor == PixelAnchor.CELL_CENTER:
            affine = affine * Affine.translation(0.5, 0.5)
        return AffineTransform(affine, source_crs=None, target_crs=self.crs)

    def _clamp_window(self, window: Window) -> Window | None:
        """Clip a window to the raster grid, None when nothing is left."""
        col_off = max(int(window.col_off), 0)
        row_off = max(int(window.row_off), 0)
        col_end = min(int(window.col_off + window.width), self.width)
        row_end = min(int(window.row_off + window.height), self.height)
        if col_end <= col_off or row_end <= row_off:
            return None
        return Window(col_off, row_off, col_end - col_off, row_end - row_off)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class RasterioRasterReader(RasterReader):
    """File-backed reader for any raster rasterio can open (GeoTIFF, COG, VRT).

    Each read opens its own dataset handle so concurrent reads do not share
    GDAL state.

    :param path: Path or URL of the raster
    :param name: Optional layer name, defaults to the file stem
    """

    def __init__(self, path: str | Path, name: str | None = None) -> None:
        self.path = str(path)
        self.name = name or Path(self.path).stem
        try:
            with rasterio.open(self.path) as src:
                self._crs = as_crs(src.crs) if src.crs else None
                self._transform = src.transform
                self._width = src.width
                self._height = src.height
                self._count = src.count
                self._sample_dimensions = [
                    SampleDimension(
                        description=description,
                        nodata=[] if nodata is None else [float(nodata)],
                        scale=float(scale) if scale is not None else 1.0,
                        offset=float(offset) if offset is not None else 0.0,
                    )
                    for description, nodata, scale, offset in zip(
                        src.descriptions, src.nodatavals, src.scales, src.offsets
                    )
                ]
        except RasterioError as e:
            raise ReadFailedError(f"Could not open raster {self.path}: {e}") from e

    @property
    def crs(self) -> CRS | None:
        return self._crs

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def band_count(self) -> int:
        return self._count

    @property
    def transform(self) -> Affine:
        return self._transform

    @property
    def sample_dimensions(self) -> list[SampleDimension]:
        return list(self._sample_dimensions)

    def read(self, grid_geometry: GridGeometry) -> Coverage | None:
        window = self._clamp_window(grid_geometry.window)
        if window is None:
            return None
        logger.debug(f"Reading window {window} from {self.path}")
        try:
            with rasterio.open(self.path) as src:
                data = src.read(window=window, masked=True)
                window_transform = src.window_transform(window)
        except RasterioError as e:
            raise ReadFailedError(f"Error reading {window} from {self.path}: {e}") from e
        return Coverage(
            data=data,
            transform=window_transform,
            crs=self._crs,
            sample_dimensions=self._sample_dimensions,
        )


class InMemoryRasterReader(RasterReader):
    """Reader over a numpy array held in memory.

    :param data: Array shaped (rows, cols) or (bands, rows, cols); masked arrays keep their mask
    :param transform: Corner-anchored affine grid-to-world transform
    :param crs: CRS of the grid, None when unknown
    :param sample_dimensions: Optional per-band metadata
    :param name: Optional layer name
    """

    def __init__(
        self,
        data: Any,
        transform: Affine,
        crs: Any = None,
        sample_dimensions: Sequence[SampleDimension] | None = None,
        name: str = "in-memory",
    ) -> None:
        array = np.ma.asarray(data)
        if array.ndim == 2:
            array = array[np.newaxis, ...]
        if array.ndim != 3:
            raise InvalidInputError(f"Raster data must be 2-D or 3-D, got {array.ndim} dimensions")
        self.data = array
        self._transform = transform
        self._crs = as_crs(crs)
        self.sample_dimensions = list(sample_dimensions or [])
        self.name = name

    @property
    def crs(self) -> CRS | None:
        return self._crs

    @property
    def width(self) -> int:
        return int(self.data.shape[2])

    @property
    def height(self) -> int:
        return int(self.data.shape[1])

    @property
    def band_count(self) -> int:
        return int(self.data.shape[0])

    @property
    def transform(self) -> Affine:
        return self._transform

    def read(self, grid_geometry: GridGeometry) -> Coverage | None:
        window = self._clamp_window(grid_geometry.window)
        if window is None:
            return None
        rows = slice(int(window.row_off), int(window.row_off + window.height))
        cols = slice(int(window.col_off), int(window.col_off + window.width))
        return Coverage(
            data=self.data[:, rows, cols].copy(),
            transform=self._transform * Affine.translation(window.col_off, window.row_off),
            crs=self._crs,
            sample_dimensions=self.sample_dimensions,
        )


class MosaicRasterReader(RasterReader):
    """Reader presenting several same-CRS, same-resolution rasters as one grid.

    Children are pasted in order in geophysical units; where they overlap the
    first reader wins.

    :param readers: Child readers, all north-up with equal pixel size and band count
    :param name: Optional layer name
    """

    def __init__(self, readers: Sequence[RasterReader], name: str = "mosaic") -> None:
        if not readers:
            raise InvalidInputError("A mosaic needs at least one raster")
        first = readers[0]
        res_x, res_y = first.transform.a, first.transform.e
        for reader in readers:
            t = reader.transform
            if t.b != 0 or t.d != 0:
                raise InvalidInputError(f"Mosaic member {reader.name} is rotated")
            if not equals_ignore_metadata(reader.crs, first.crs):
                raise InvalidInputError(f"Mosaic member {reader.name} has a different CRS")
            if not (np.isclose(t.a, res_x) and np.isclose(t.e, res_y)):
                raise InvalidInputError(f"Mosaic member {reader.name} has a different pixel size")
            if reader.band_count != first.band_count:
                raise InvalidInputError(f"Mosaic member {reader.name} has a different band count")

        self.readers = list(readers)
        self.name = name
        envelopes = [reader.original_envelope for reader in self.readers]
        minx = min(env.minx for env in envelopes)
        miny = min(env.miny for env in envelopes)
        maxx = max(env.maxx for env in envelopes)
        maxy = max(env.maxy for env in envelopes)
        origin_x = minx if res_x > 0 else maxx
        origin_y = maxy if res_y < 0 else miny
        for reader in self.readers:
            col_shift = (reader.transform.c - origin_x) / res_x
            row_shift = (reader.transform.f - origin_y) / res_y
            if not all(abs(shift - round(shift)) <= GRID_SNAP_TOLERANCE for shift in (col_shift, row_shift)):
                raise InvalidInputError(f"Mosaic member {reader.name} is not aligned with the mosaic pixel grid")
        self._transform = Affine(res_x, 0.0, origin_x, 0.0, res_y, origin_y)
        self._width = int(round((maxx - minx) / abs(res_x)))
        self._height = int(round((maxy - miny) / abs(res_y)))
        self._crs = first.crs

    @property
    def crs(self) -> CRS | None:
        return self._crs

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def band_count(self) -> int:
        return self.readers[0].band_count

    @property
    def transform(self) -> Affine:
        return self._transform

    def read(self, grid_geometry: GridGeometry) -> Coverage | None:
        window = self._clamp_window(grid_geometry.window)
        if window is None:
            return None
        rows, cols = int(window.height), int(window.width)
        window_transform = self._transform * Affine.translation(window.col_off, window.row_off)
        window_bounds = AffineTransform(window_transform).transform_bounds((0, 0, cols, rows), 0)
        window_envelope = ReferencedEnvelope.from_bounds(window_bounds, crs=self._crs)
        to_window_grid = ~window_transform

        out = np.ma.masked_all((self.band_count, rows, cols), dtype="float64")
        any_read = False
        for reader in self.readers:
            child_grid = select_grid_geometry(reader, window_envelope)
            if child_grid is None:
                continue
            coverage = reader.read(child_grid)
            if coverage is None:
                continue
            any_read = True
            tile = coverage.view(ViewType.GEOPHYSICS).data
            col0, row0 = to_window_grid * (coverage.transform.c, coverage.transform.f)
            col0, row0 = int(round(col0)), int(round(row0))
            self._paste(out, tile, row0, col0)

        if not any_read:
            return None
        return Coverage(data=out, transform=window_transform, crs=self._crs, view_type=ViewType.GEOPHYSICS)

    @staticmethod
    def _paste(out: np.ma.MaskedArray, tile: np.ma.MaskedArray, row0: int, col0: int) -> None:
        """Copy valid tile cells into still-masked cells of ``out``."""
        _, out_rows, out_cols = out.shape
        _, tile_rows, tile_cols = tile.shape
        r_start, c_start = max(row0, 0), max(col0, 0)
        r_end, c_end = min(row0 + tile_rows, out_rows), min(col0 + tile_cols, out_cols)
        if r_end <= r_start or c_end <= c_start:
            return
        target = out[:, r_start:r_end, c_start:c_end]
        source = tile[:, r_start - row0 : r_end - row0, c_start - col0 : c_end - col0]
        fill = np.ma.getmaskarray(target) & ~np.ma.getmaskarray(source)
        target_data = np.ma.getdata(target)
        target_mask = np.ma.getmaskarray(target).copy()
        target_data[fill] = np.ma.getdata(source)[fill]
        target_mask[fill] = False
        out[:, r_start:r_end, c_start:c_end] = np.ma.masked_array(target_data, mask=target_mask)
