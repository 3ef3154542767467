"""Vector feature source connectors."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from types import TracebackType
from typing import Any

import geopandas as gpd
import numpy as np
from dagster import get_dagster_logger
from pyproj.exceptions import ProjError

from hazard_statistics.errors import ReadFailedError, SchemaError, TransformFailedError
from hazard_statistics.geospatial.crs_ops import equals_ignore_metadata, find_transform, transform_geometry
from hazard_statistics.models.models import (
    Feature,
    FeatureSchema,
    GeometryDescriptor,
    Query,
    ReferencedGeometry,
)

logger = get_dagster_logger()


class FeatureIterator:
    """Iterator over query results that must be closed once consumed.

    :param features: Underlying feature iterable
    :param on_close: Optional callback run once on close
    """

    def __init__(self, features: Iterable[Feature], on_close: Callable[[], None] | None = None) -> None:
        self._features: Iterator[Feature] = iter(features)
        self._on_close = on_close
        self.closed = False

    def __iter__(self) -> "FeatureIterator":
        return self

    def __next__(self) -> Feature:
        if self.closed:
            raise StopIteration
        return next(self._features)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> "FeatureIterator":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class FeatureSource(ABC):
    """Source of features sharing one schema."""

    name: str = "features"

    @property
    @abstractmethod
    def schema(self) -> FeatureSchema: ...

    @abstractmethod
    def get_features(self, query: Query) -> FeatureIterator:
        """Run a query.

        Features are reprojected to ``query.crs_reproject`` on read and
        filtered by ``query.filter``, whose literal is expressed in
        ``query.crs``.

        :param query: Query to run
        :returns: FeatureIterator the caller must close
        :raises ReadFailedError: If the backend cannot be read
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class GeoDataFrameFeatureSource(FeatureSource):
    """Feature source over a GeoDataFrame.

    :param gdf: GeoDataFrame with an active geometry column
    :param name: Optional source name
    """

    def __init__(self, gdf: gpd.GeoDataFrame, name: str = "features") -> None:
        self.gdf = gdf
        self.name = name

    @classmethod
    def from_file(cls, path: str | Path, layer: str | None = None, name: str | None = None) -> "GeoDataFrameFeatureSource":
        """Load any vector format geopandas can read.

        :param path: File path or URL
        :param layer: Optional layer name for multi-layer sources
        :param name: Optional source name, defaults to the file stem
        :returns: GeoDataFrameFeatureSource instance
        :raises ReadFailedError: If the file cannot be read
        """
        try:
            gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
        except Exception as e:
            raise ReadFailedError(f"Could not read features from {path}: {e}") from e
        logger.info(f"Loaded {len(gdf)} features from {path}")
        return cls(gdf, name=name or Path(str(path)).stem)

    def _geometry_column(self) -> str | None:
        try:
            return str(self.gdf.geometry.name)
        except AttributeError:
            return None

    @property
    def schema(self) -> FeatureSchema:
        geometry_column = self._geometry_column()
        descriptor = None
        if geometry_column is not None:
            descriptor = GeometryDescriptor(name=geometry_column, crs=self.gdf.crs)
        attributes = [str(column) for column in self.gdf.columns if column != geometry_column]
        return FeatureSchema(name=self.name, attributes=attributes, geometry_descriptor=descriptor)

    def _filter_literal(self, query: Query) -> Any:
        literal = query.filter.geometry
        if query.crs is None or query.crs_reproject is None or equals_ignore_metadata(query.crs, query.crs_reproject):
            return literal
        transform = find_transform(query.crs, query.crs_reproject)
        return transform_geometry(transform, ReferencedGeometry(geometry=literal, crs=query.crs)).geometry

    def get_features(self, query: Query) -> FeatureIterator:
        geometry_column = self._geometry_column()
        if geometry_column is None:
            raise SchemaError(f"Feature source {self.name} has no geometry column")

        gdf = self.gdf
        if query.crs_reproject is not None and gdf.crs is not None and not equals_ignore_metadata(
            gdf.crs, query.crs_reproject
        ):
            try:
                gdf = gdf.to_crs(query.crs_reproject)
            except ProjError as e:
                raise TransformFailedError(f"Error reprojecting {self.name} to {query.crs_reproject}") from e

        if query.filter is not None:
            if query.filter.property_name not in gdf.columns:
                raise SchemaError(f"Feature source {self.name} has no attribute {query.filter.property_name}")
            literal = self._filter_literal(query)
            positions = gdf[query.filter.property_name].sindex.query(literal, predicate="intersects")
            gdf = gdf.iloc[np.sort(positions)]

        if query.property_names is None:
            columns = [column for column in gdf.columns if column != geometry_column]
        else:
            columns = [name for name in query.property_names if name in gdf.columns and name != geometry_column]

        attributes = gdf[columns]
        # Null cells come back as None; object dtype keeps ints as Python ints.
        records = attributes.astype(object).where(attributes.notna(), None).to_dict("records")
        features = (
            Feature(id=str(index), properties=record, geometry=geometry)
            for index, record, geometry in zip(gdf.index, records, gdf.geometry)
        )
        return FeatureIterator(features)
