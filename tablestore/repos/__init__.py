"""
Repository layer for data access operations.

This package contains the generic Store, its pagination and batching
helpers, and one typed repository per entity.
"""
