"""Data models for hazard statistics."""

from enum import Enum
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from pyproj import CRS
from pyproj.exceptions import CRSError
from rasterio.windows import Window
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

from hazard_statistics.config.constants import (
    RESULT_BUFFER_KEY,
    RESULT_POLITICAL_KEY,
    RESULT_STATISTICS_KEY,
    STATISTICS_KEYS,
)


def coerce_crs(value: Any) -> CRS | None:
    """Coerce a CRS-like value to a pyproj CRS.

    Accepts pyproj CRS, rasterio CRS, EPSG codes, authority strings and WKT.

    :param value: CRS-like value or None
    :returns: pyproj CRS or None
    :raises ValueError: If the value is not a recognizable CRS
    """
    if value is None or isinstance(value, CRS):
        return value
    try:
        return CRS.from_user_input(value)
    except CRSError as e:
        raise ValueError(f"Unrecognized CRS {value!r}: {e}") from e


class PixelAnchor(str, Enum):
    """Pixel location a grid-to-world transform maps integer indices to."""

    CELL_CORNER = "cell_corner"
    CELL_CENTER = "cell_center"


class ViewType(str, Enum):
    """Coverage sample representation."""

    RAW = "raw"
    GEOPHYSICS = "geophysics"


class ReferencedEnvelope(BaseModel):
    """Axis-aligned bounding box tagged with an optional CRS.

    :param minx: Minimum x
    :param miny: Minimum y
    :param maxx: Maximum x
    :param maxy: Maximum y
    :param crs: CRS of the coordinates, None when unknown
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    minx: float = PydanticField(..., description="Minimum x coordinate")
    miny: float = PydanticField(..., description="Minimum y coordinate")
    maxx: float = PydanticField(..., description="Maximum x coordinate")
    maxy: float = PydanticField(..., description="Maximum y coordinate")
    crs: CRS | None = PydanticField(default=None, description="Coordinate reference system")

    @field_validator("crs", mode="before")
    @classmethod
    def _validate_crs(cls, value: Any) -> CRS | None:
        return coerce_crs(value)

    @classmethod
    def from_bounds(cls, bounds: tuple[float, float, float, float], crs: Any = None) -> "ReferencedEnvelope":
        """Create envelope from a (minx, miny, maxx, maxy) tuple.

        :param bounds: Bounds tuple
        :param crs: Optional CRS
        :returns: ReferencedEnvelope instance
        """
        minx, miny, maxx, maxy = bounds
        return cls(minx=minx, miny=miny, maxx=maxx, maxy=maxy, crs=crs)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return self.minx, self.miny, self.maxx, self.maxy

    @property
    def width(self) -> float:
        return self.maxx - self.minx

    @property
    def height(self) -> float:
        return self.maxy - self.miny

    @property
    def is_empty(self) -> bool:
        """True when any span is zero, negative or NaN."""
        return not (self.maxx > self.minx and self.maxy > self.miny)

    def intersection(self, other: "ReferencedEnvelope") -> "ReferencedEnvelope":
        """Intersect with another envelope, keeping this envelope's CRS.

        The result may be empty; check ``is_empty``.
        """
        return ReferencedEnvelope(
            minx=max(self.minx, other.minx),
            miny=max(self.miny, other.miny),
            maxx=min(self.maxx, other.maxx),
            maxy=min(self.maxy, other.maxy),
            crs=self.crs,
        )

    def contains(self, other: "ReferencedEnvelope") -> bool:
        return (
            self.minx <= other.minx
            and self.miny <= other.miny
            and self.maxx >= other.maxx
            and self.maxy >= other.maxy
        )

    def with_crs(self, crs: Any) -> "ReferencedEnvelope":
        return self.model_copy(update={"crs": coerce_crs(crs)})


class ReferencedGeometry(BaseModel):
    """Geometry value paired with an optional CRS tag.

    An untagged geometry is assumed to be in the CRS of whoever consumes it.

    :param geometry: Shapely geometry
    :param crs: CRS of the coordinates, None when unknown
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    geometry: BaseGeometry = PydanticField(..., description="Shapely geometry")
    crs: CRS | None = PydanticField(default=None, description="Coordinate reference system")

    @field_validator("geometry", mode="before")
    @classmethod
    def _validate_geometry(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return shape(value)
        return value

    @field_validator("crs", mode="before")
    @classmethod
    def _validate_crs(cls, value: Any) -> CRS | None:
        return coerce_crs(value)

    @property
    def is_empty(self) -> bool:
        return bool(self.geometry.is_empty)

    def with_crs(self, crs: Any) -> "ReferencedGeometry":
        return self.model_copy(update={"crs": coerce_crs(crs)})

    def with_geometry(self, geometry: BaseGeometry) -> "ReferencedGeometry":
        return self.model_copy(update={"geometry": geometry})


class GridGeometry(BaseModel):
    """Integer pixel rectangle paired with its world envelope in the raster CRS.

    :param window: Pixel rectangle (column/row offsets and sizes)
    :param envelope: World envelope in the raster CRS
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    window: Window = PydanticField(..., description="Pixel rectangle")
    envelope: ReferencedEnvelope = PydanticField(..., description="World envelope in raster CRS")

    @property
    def width(self) -> int:
        return int(self.window.width)

    @property
    def height(self) -> int:
        return int(self.window.height)


class SampleDimension(BaseModel):
    """Per-band metadata converting raw samples to physical units.

    :param description: Optional band description
    :param nodata: Raw values marking cells to exclude
    :param scale: Multiplier applied to raw samples
    :param offset: Value added after scaling
    """

    model_config = ConfigDict(frozen=True)

    description: str | None = PydanticField(default=None, description="Band description")
    nodata: list[float] = PydanticField(default_factory=list, description="Raw no-data values")
    scale: float = PydanticField(default=1.0, description="Raw to physical scale")
    offset: float = PydanticField(default=0.0, description="Raw to physical offset")


class Coverage(BaseModel):
    """Tile of cell values read from a raster.

    :param data: Masked array shaped (bands, rows, cols)
    :param transform: Affine grid-to-world transform of the tile, corner anchored
    :param crs: CRS of the tile
    :param sample_dimensions: One entry per band; missing entries mean identity
    :param view_type: Whether ``data`` holds raw or physical values
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: Any = PydanticField(..., description="Masked cell values (bands, rows, cols)")
    transform: Any = PydanticField(default=None, description="Affine grid-to-world transform")
    crs: CRS | None = PydanticField(default=None, description="Coordinate reference system")
    sample_dimensions: list[SampleDimension] = PydanticField(default_factory=list, description="Band metadata")
    view_type: ViewType = PydanticField(default=ViewType.RAW, description="Sample representation")

    @field_validator("data", mode="before")
    @classmethod
    def _validate_data(cls, value: Any) -> Any:
        data = np.ma.asarray(value)
        if data.ndim == 2:
            data = data[np.newaxis, ...]
        if data.ndim != 3:
            raise ValueError(f"Coverage data must be 2-D or 3-D, got {data.ndim} dimensions")
        return data

    @field_validator("crs", mode="before")
    @classmethod
    def _validate_crs(cls, value: Any) -> CRS | None:
        return coerce_crs(value)

    @property
    def band_count(self) -> int:
        return int(self.data.shape[0])

    @property
    def shape(self) -> tuple[int, int]:
        return int(self.data.shape[1]), int(self.data.shape[2])

    def sample_dimension(self, band: int) -> SampleDimension:
        if band < len(self.sample_dimensions):
            return self.sample_dimensions[band]
        return SampleDimension()

    def view(self, view_type: ViewType) -> "Coverage":
        """Return this coverage in the requested representation.

        Converting to geophysics masks NaN cells and the sample dimension's
        no-data values, then applies ``value * scale + offset``.

        :param view_type: Target representation
        :returns: Coverage in that representation
        """
        if view_type == self.view_type:
            return self

        bands = []
        for index in range(self.band_count):
            dim = self.sample_dimension(index)
            band = self.data[index]
            values = np.ma.getdata(band).astype("float64")
            mask = np.ma.getmaskarray(band) | np.isnan(values)
            if view_type == ViewType.GEOPHYSICS:
                if dim.nodata:
                    mask |= np.isin(values, dim.nodata)
                values = values * dim.scale + dim.offset
            else:
                values = (values - dim.offset) / dim.scale
            bands.append(np.ma.masked_array(values, mask=mask))

        data = np.ma.stack(bands) if bands else self.data
        return self.model_copy(update={"data": data, "view_type": view_type})


class LayerStatistics(BaseModel):
    """Per-band distribution summary of one raster layer.

    :param min: Least value per band
    :param max: Greatest value per band
    :param mean: Arithmetic mean per band
    :param stddev: Population standard deviation per band
    """

    min: list[float] = PydanticField(..., description="Minimum value per band")
    max: list[float] = PydanticField(..., description="Maximum value per band")
    mean: list[float] = PydanticField(..., description="Mean value per band")
    stddev: list[float] = PydanticField(..., description="Population standard deviation per band")

    def to_dict(self) -> dict[str, list[float]]:
        return {key: list(getattr(self, key)) for key in STATISTICS_KEYS}


class GeometryDescriptor(BaseModel):
    """Geometry attribute of a feature schema.

    :param name: Attribute name
    :param crs: Native CRS of the attribute
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = PydanticField(..., description="Geometry attribute name")
    crs: CRS | None = PydanticField(default=None, description="Native CRS")

    @field_validator("crs", mode="before")
    @classmethod
    def _validate_crs(cls, value: Any) -> CRS | None:
        return coerce_crs(value)


class FeatureSchema(BaseModel):
    """Feature type of a vector source."""

    model_config = ConfigDict(frozen=True)

    name: str = PydanticField(..., description="Feature type name")
    attributes: list[str] = PydanticField(default_factory=list, description="Non-geometry attribute names")
    geometry_descriptor: GeometryDescriptor | None = PydanticField(default=None, description="Geometry attribute")


class Feature(BaseModel):
    """Single record of a vector source."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = PydanticField(..., description="Feature identifier")
    properties: dict[str, Any] = PydanticField(default_factory=dict, description="Attribute values")
    geometry: BaseGeometry | None = PydanticField(default=None, description="Feature geometry")

    def get_property(self, name: str) -> Any:
        return self.properties.get(name)


class IntersectsFilter(BaseModel):
    """Spatial filter matching features whose geometry intersects a literal."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    property_name: str = PydanticField(..., description="Geometry attribute to test")
    geometry: BaseGeometry = PydanticField(..., description="Literal geometry, in the query CRS")


class Query(BaseModel):
    """Vector source query.

    :param property_names: Attributes to return, None for all
    :param filter: Optional spatial filter
    :param crs: CRS the filter literal is expressed in
    :param crs_reproject: CRS features are reprojected to on read
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    property_names: list[str] | None = PydanticField(default=None, description="Attribute projection")
    filter: IntersectsFilter | None = PydanticField(default=None, description="Spatial filter")
    crs: CRS | None = PydanticField(default=None, description="Query CRS")
    crs_reproject: CRS | None = PydanticField(default=None, description="Output CRS")

    @field_validator("crs", "crs_reproject", mode="before")
    @classmethod
    def _validate_crs(cls, value: Any) -> CRS | None:
        return coerce_crs(value)


class HazardStatisticsResult(BaseModel):
    """Operator output.

    :param statistics: One slot per input raster layer, None when disjoint
    :param political: Attribute records of intersecting political features
    :param buffer: Buffered region of interest
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    statistics: list[LayerStatistics | None] = PydanticField(..., description="Per-layer statistics")
    political: list[dict[str, Any]] = PydanticField(default_factory=list, description="Political records")
    buffer: ReferencedGeometry = PydanticField(..., description="Buffered region of interest")

    def to_dict(self) -> dict[str, Any]:
        return {
            RESULT_STATISTICS_KEY: [stats.to_dict() if stats is not None else None for stats in self.statistics],
            RESULT_POLITICAL_KEY: [dict(record) for record in self.political],
            RESULT_BUFFER_KEY: self.buffer,
        }
