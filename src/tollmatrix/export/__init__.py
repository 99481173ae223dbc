"""
Export module for reviewing registry data.

Provides:
- GeoJSON (web maps, general GIS)
"""

from .geojson_exporter import GeoJSONExporter, points_to_geodataframe

__all__ = [
    'GeoJSONExporter',
    'points_to_geodataframe',
]
