from pathlib import Path

import geopandas as gpd
import pytest
from pyproj import Transformer
from shapely.geometry import box
from shapely.ops import transform as shp_transform

from hazard_statistics.connectors.feature_source import FeatureIterator, FeatureSource, GeoDataFrameFeatureSource
from hazard_statistics.errors import CancelledError, ReadFailedError, SchemaError
from hazard_statistics.geospatial import vector_ops
from hazard_statistics.models.models import Feature, FeatureSchema, Query, ReferencedGeometry
from hazard_statistics.progress import ProgressListener


def _regions() -> GeoDataFrameFeatureSource:
    """
    Helper building a political layer with two regions far apart.
    """
    gdf = gpd.GeoDataFrame(
        {"name": ["A", "B"], "pop": [100, 200]},
        geometry=[box(0, 0, 2, 2), box(10, 10, 12, 12)],
        crs="EPSG:4326",
    )
    return GeoDataFrameFeatureSource(gdf, name="regions")


class _RecordingSource(FeatureSource):
    """Feature source keeping the last iterator it handed out."""

    def __init__(self, features: list[Feature], descriptor: bool = True) -> None:
        self.features = features
        self.descriptor = descriptor
        self.iterator: FeatureIterator | None = None
        self.name = "recording"

    @property
    def schema(self) -> FeatureSchema:
        return FeatureSchema.model_validate(
            {
                "name": self.name,
                "attributes": ["name"],
                "geometry_descriptor": {"name": "geometry", "crs": "EPSG:4326"} if self.descriptor else None,
            }
        )

    def get_features(self, query: Query) -> FeatureIterator:
        self.iterator = FeatureIterator(self.features)
        return self.iterator


def test_intersect_features_returns_requested_attributes() -> None:
    buffer = ReferencedGeometry(geometry=box(1, 1, 3, 3), crs="EPSG:4326")

    records = vector_ops.intersect_features(_regions(), ["name", "pop"], buffer)

    assert records == [{"name": "A", "pop": 100}]


def test_intersect_features_keeps_attribute_order_and_fills_missing() -> None:
    """
    Test that records follow the requested attribute order.

    Attributes the layer does not carry map to None.
    """
    buffer = ReferencedGeometry(geometry=box(-1, -1, 11, 11), crs="EPSG:4326")

    records = vector_ops.intersect_features(_regions(), ["pop", "iso_code", "name"], buffer)

    assert records == [
        {"pop": 100, "iso_code": None, "name": "A"},
        {"pop": 200, "iso_code": None, "name": "B"},
    ]
    assert list(records[0]) == ["pop", "iso_code", "name"]


def test_null_attribute_values_are_none() -> None:
    """
    Test that null attribute cells are returned as None rather than NaN.
    """
    gdf = gpd.GeoDataFrame(
        {"name": ["A", None], "pop": [None, 5], "rank": [1, 2]},
        geometry=[box(0, 0, 2, 2), box(1, 1, 3, 3)],
        crs="EPSG:4326",
    )
    source = GeoDataFrameFeatureSource(gdf, name="regions")
    buffer = ReferencedGeometry(geometry=box(0.5, 0.5, 2.5, 2.5), crs="EPSG:4326")

    records = vector_ops.intersect_features(source, ["name", "pop", "rank"], buffer)

    assert records[0]["pop"] is None
    assert records[1]["name"] is None
    assert records[1]["pop"] == 5
    assert [record["rank"] for record in records] == [1, 2]
    assert all(type(record["rank"]) is int for record in records)


def test_intersect_features_no_match_is_empty() -> None:
    buffer = ReferencedGeometry(geometry=box(5, 5, 6, 6), crs="EPSG:4326")
    assert vector_ops.intersect_features(_regions(), ["name"], buffer) == []


def test_untagged_buffer_is_read_in_layer_crs() -> None:
    source = _regions()
    buffer = ReferencedGeometry(geometry=box(11, 11, 13, 13))

    query = vector_ops.build_intersection_query(source, ["name"], buffer)

    assert query.crs == source.gdf.crs
    assert query.crs_reproject == source.gdf.crs
    assert vector_ops.intersect_features(source, ["name"], buffer) == [{"name": "B"}]


def test_buffer_in_other_crs_matches_reprojected_features() -> None:
    """
    Test that a Web Mercator buffer finds features stored in WGS 84.
    """
    transformer = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
    projected = shp_transform(transformer.transform, box(1, 1, 3, 3))
    buffer = ReferencedGeometry(geometry=projected, crs="EPSG:3857")

    records = vector_ops.intersect_features(_regions(), ["name"], buffer)

    assert records == [{"name": "A"}]


def test_missing_geometry_descriptor_raises_schema_error() -> None:
    source = _RecordingSource([], descriptor=False)
    buffer = ReferencedGeometry(geometry=box(0, 0, 1, 1))

    with pytest.raises(SchemaError):
        vector_ops.intersect_features(source, ["name"], buffer)


def test_iterator_is_closed_after_reading() -> None:
    source = _RecordingSource([Feature(id="1", properties={"name": "A"})])

    records = vector_ops.intersect_features(source, ["name"], ReferencedGeometry(geometry=box(0, 0, 1, 1)))

    assert records == [{"name": "A"}]
    assert source.iterator is not None and source.iterator.closed


def test_iterator_is_closed_on_cancel() -> None:
    """
    Test that cancellation while iterating raises and still closes the iterator.
    """
    source = _RecordingSource([Feature(id="1", properties={"name": "A"}), Feature(id="2", properties={"name": "B"})])
    monitor = ProgressListener()
    monitor.cancel()

    with pytest.raises(CancelledError):
        vector_ops.intersect_features(source, ["name"], ReferencedGeometry(geometry=box(0, 0, 1, 1)), monitor)

    assert source.iterator is not None and source.iterator.closed


def test_backend_io_error_becomes_read_failed() -> None:
    class _BrokenSource(_RecordingSource):
        def get_features(self, query: Query) -> FeatureIterator:
            raise OSError("connection reset")

    with pytest.raises(ReadFailedError):
        vector_ops.intersect_features(_BrokenSource([]), ["name"], ReferencedGeometry(geometry=box(0, 0, 1, 1)))


def test_geodataframe_source_from_file(tmp_path: Path) -> None:
    path = tmp_path / "regions.geojson"
    _regions().gdf.to_file(path, driver="GeoJSON")

    source = GeoDataFrameFeatureSource.from_file(path)

    assert source.name == "regions"
    assert source.schema.geometry_descriptor is not None
    assert set(source.schema.attributes) == {"name", "pop"}


def test_geodataframe_source_from_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ReadFailedError):
        GeoDataFrameFeatureSource.from_file(tmp_path / "missing.geojson")
