"""
GeoJSON exporter for toll points and their search circles.

Exports registry points as GeoJSON FeatureCollections for review in:
- Web mapping libraries (Leaflet, Mapbox GL JS)
- GIS software (QGIS, ArcGIS)
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from datetime import datetime

import geopandas as gpd
import pandas as pd
from shapely.geometry import mapping

from ..store.models import TollPoint

logger = logging.getLogger(__name__)


def points_to_geodataframe(points: Sequence[TollPoint]) -> gpd.GeoDataFrame:
    """Build a WGS84 GeoDataFrame of the located points.

    Points without a valid location are left out.
    """
    rows = [
        {
            "id": p.id,
            "name": p.name,
            "key": p.key,
            "number": p.number,
            "latitude": p.latitude,
            "longitude": p.longitude,
            "search_radius_m": p.search_radius_m,
            "state_calculator_id": p.state_calculator_id,
            "website_url": p.website_url,
        }
        for p in points
        if p.has_valid_location
    ]
    df = pd.DataFrame(rows, columns=[
        "id", "name", "key", "number", "latitude", "longitude",
        "search_radius_m", "state_calculator_id", "website_url",
    ])
    return gpd.GeoDataFrame(
        df,
        geometry=gpd.points_from_xy(df.longitude, df.latitude),
        crs='EPSG:4326'
    )


class GeoJSONExporter:
    """Export toll points as GeoJSON for web maps and GIS review."""

    def __init__(self, output_dir: Path):
        """Initialize GeoJSON exporter.

        Args:
            output_dir: Directory for GeoJSON output files
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def export_points(
        self,
        points: Sequence[TollPoint],
        output_name: str = "tolls.geojson",
        include_circles: bool = False,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Path:
        """Export toll points as a GeoJSON FeatureCollection.

        Args:
            points: Toll points; unlocated points are skipped
            output_name: Output filename
            include_circles: Also emit a polygon per point approximating its
                search radius
            metadata: Extra entries for the metadata block

        Returns:
            Path to created GeoJSON file
        """
        gdf = points_to_geodataframe(points)

        features: List[Dict[str, Any]] = []
        for _, row in gdf.iterrows():
            properties = row.drop('geometry').to_dict()
            for key, value in properties.items():
                if pd.isna(value):
                    properties[key] = None
            properties['type'] = 'toll_point'

            features.append({
                'type': 'Feature',
                'geometry': mapping(row.geometry),
                'properties': properties
            })

        circle_count = 0
        if include_circles and not gdf.empty:
            with_radius = gdf[gdf.search_radius_m > 0]
            if not with_radius.empty:
                # Buffer in UTM so radii are in meters
                utm_crs = with_radius.estimate_utm_crs()
                circles = with_radius.to_crs(utm_crs).buffer(with_radius.search_radius_m.values)
                circles = circles.to_crs('EPSG:4326')

                for (_, row), circle in zip(with_radius.iterrows(), circles):
                    features.append({
                        'type': 'Feature',
                        'geometry': mapping(circle),
                        'properties': {
                            'id': row['id'],
                            'name': None if pd.isna(row['name']) else row['name'],
                            'type': 'search_radius',
                            'search_radius_m': float(row['search_radius_m']),
                        }
                    })
                    circle_count += 1

        geojson = {
            'type': 'FeatureCollection',
            'features': features,
            'metadata': {
                'generated': datetime.now().isoformat(),
                'count': len(gdf),
                'skipped_unlocated': len(points) - len(gdf),
                'circles': circle_count,
                **(metadata or {}),
            }
        }

        output_path = self.output_dir / output_name
        with open(output_path, 'w') as f:
            json.dump(geojson, f, indent=2)

        logger.info(f"Exported {len(gdf)} toll points to {output_path}")
        return output_path
