"""
tilewarp test suite

Structure:
- unit/: tests for individual components (geometry, planning, caches, resampling, ...)
- integration/: end-to-end reprojection through a fake transport and the HTTP app
"""
