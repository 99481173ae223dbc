"""
Import orchestration.

Source adapters translate feeds into canonical records; ImportRun resolves,
prices and commits them; radius maintenance recomputes search radii.
"""

from .import_run import ImportResult, ImportRun
from .radius_maintenance import refresh_region_radii
from .source_adapter import (
    CsvSourceAdapter,
    PlazaPriceRecord,
    SourceAdapter,
    read_toll_points,
)

__all__ = [
    "CsvSourceAdapter",
    "ImportResult",
    "ImportRun",
    "PlazaPriceRecord",
    "SourceAdapter",
    "read_toll_points",
    "refresh_region_radii",
]
