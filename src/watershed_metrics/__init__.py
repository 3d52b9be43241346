"""Resolve sites to NHDPlus catchments and enrich them with StreamCat metrics."""

__version__ = "0.1.0"
