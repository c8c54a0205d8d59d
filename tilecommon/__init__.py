"""
Shared building blocks for tilewarp:
- geo: grid resolutions, geodetic/web-mercator tile math, GCJ-02 offset, bbox helpers
- types: RGBA Raster, TileCoord, BBox
- logging_setup: JSON logging
- utils: rounding and running statistics
"""
