"""
Geospatial operations behind the hazard statistics operator.

This module contains:
- CRS service (CRS comparison, transform lookup, envelope and geometry transforms)
- Geometry kernel (buffering, envelopes, CRS tagging)
- Raster operations (sub-grid selection and reading)
- Statistics over geophysical coverages
- Vector intersection with political layers
"""
