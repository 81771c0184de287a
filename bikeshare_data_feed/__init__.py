"""Bike-share data feed - GBFS station snapshot ingestion and daily export.

Provides:
- GBFS feed discovery and per-second snapshot ingestion
- DuckDB persistence layer keyed by (updated_time, station_id)
- Daily CSV export to a GitHub dataset repository
"""

__version__ = "0.1.0"

from . import gbfs

__all__ = ["gbfs", "__version__"]
