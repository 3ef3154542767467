"""Constants for operator inputs, outputs and geometric defaults."""

GEOMETRY_KEY = "geometry"
RADIUS_KEY = "radius"
DATALAYERS_KEY = "datalayers"
POLITICAL_LAYER_KEY = "political_layer"
POLITICAL_ATTRIBUTES_KEY = "political_attributes"

RESULT_STATISTICS_KEY = "statistics"
RESULT_POLITICAL_KEY = "political"
RESULT_BUFFER_KEY = "buffer"

STATISTICS_KEYS: tuple[str, ...] = ("min", "max", "mean", "stddev")

# Segments per quarter circle, same default as JTS/GEOS.
DEFAULT_BUFFER_QUAD_SEGS = 8
DEFAULT_ENVELOPE_DENSIFY_POINTS = 21
DEFAULT_LENIENT_TRANSFORMS = True

# Grid coordinates closer than this to an integer pixel edge are snapped to it.
GRID_SNAP_TOLERANCE = 1e-6

SETTINGS_ENV_PREFIX = "HAZARD_STATS_"
