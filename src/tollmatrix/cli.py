#!/usr/bin/env python3
"""
tollmatrix CLI

Command-line interface for maintaining the toll registry: seeding points,
importing price feeds, allocating search radii and region-scoped cleanup.
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import Optional, List

from shapely.geometry import Polygon

from .config_manager import ConfigManager, TollMatrixConfig
from .exceptions import TollMatrixError
from .export.geojson_exporter import GeoJSONExporter
from .geo import bounding_box, region_for_state
from .importer.import_run import ImportRun
from .importer.radius_maintenance import refresh_region_radii
from .importer.source_adapter import CsvSourceAdapter, read_toll_points
from .store.migrations import init_database
from .store.toll_store import TollStore

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path('outputs/tollmatrix.db')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tollmatrix',
        description="tollmatrix - Reconcile toll price feeds against the toll registry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the database
  %(prog)s --db data/tolls.db init-db

  # Load registry points
  %(prog)s --db data/tolls.db seed tolls_ks.csv

  # Import a state price feed
  %(prog)s --db data/tolls.db import ks_prices.csv --state KS

  # Recompute search radii for a state
  %(prog)s --db data/tolls.db allocate-radii --state KS

  # See what a region delete would remove
  %(prog)s --db data/tolls.db delete-prices --state KS --dry-run
        """
    )

    parser.add_argument(
        '-c', '--config',
        type=Path,
        help='Configuration YAML file'
    )
    parser.add_argument(
        '--db',
        type=Path,
        help=f'Database path (default: from config, else {DEFAULT_DB_PATH})'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose output'
    )
    parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Minimal output (errors only)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('init-db', help='Create or upgrade the database schema')

    seed = subparsers.add_parser('seed', help='Load toll points from a CSV/Excel file')
    seed.add_argument('input_file', type=Path, help='CSV/Excel file with toll points')

    imp = subparsers.add_parser('import', help='Import a price feed for one state')
    imp.add_argument('input_file', type=Path, help='CSV/Excel price feed')
    imp.add_argument('--state', required=True, help='State code, e.g. KS')
    imp.add_argument('--calculator', help='State calculator name (used when creating it)')
    imp.add_argument('--source-name', help='Source name recorded with the run (default: file name)')
    _add_bbox_argument(imp)

    radii = subparsers.add_parser('allocate-radii', help='Recompute search radii in a region')
    _add_region_arguments(radii)
    radii.add_argument('--default-radius', type=float, help='Starting radius in meters')
    radii.add_argument(
        '--merge-duplicates',
        action='store_true',
        help='Give points stacked on the same coordinates one shared circle'
    )

    delete = subparsers.add_parser('delete-prices', help='Delete prices and pairs in a region')
    _add_region_arguments(delete)
    delete.add_argument('--dry-run', action='store_true', help='Only report what would be deleted')
    delete.add_argument('--yes', action='store_true', help='Do not ask for confirmation')

    export = subparsers.add_parser('export-geojson', help='Export toll points in a region as GeoJSON')
    _add_region_arguments(export)
    export.add_argument('-o', '--output-name', default='tolls.geojson', help='Output filename')
    export.add_argument('--output-dir', type=Path, help='Output directory (default: from config)')
    export.add_argument('--circles', action='store_true', help='Include search radius circles')

    subparsers.add_parser('stats', help='Show registry statistics')

    return parser


def _add_bbox_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--bbox',
        nargs=4,
        type=float,
        metavar=('SOUTH', 'WEST', 'NORTH', 'EAST'),
        help='Region bounds in degrees (default: known bounds for the state)'
    )


def _add_region_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--state', help='State code whose bounds define the region')
    _add_bbox_argument(parser)


def _resolve_region(args, config: Optional[TollMatrixConfig]) -> Polygon:
    if args.bbox:
        return bounding_box(*args.bbox)
    if args.state:
        return region_for_state(args.state, config.regions if config else None)
    raise ValueError("A region is required: pass --state or --bbox")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")

    try:
        return run_command(args)
    except (TollMatrixError, FileNotFoundError, ValueError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1


def run_command(args) -> int:
    config = ConfigManager(args.config).load() if args.config else None
    db_path = args.db or (config.db_path if config else DEFAULT_DB_PATH)

    if args.command == 'init-db':
        version = init_database(db_path)
        if not args.quiet:
            print(f"✅ Database ready: {db_path} (schema v{version})")
        return 0

    store = TollStore(db_path)

    if args.command == 'seed':
        points = read_toll_points(args.input_file)
        count = store.add_points(points)
        if not args.quiet:
            print(f"✅ Loaded {count} toll points into {db_path}")
        return 0

    if args.command == 'import':
        region = bounding_box(*args.bbox) if args.bbox else None
        adapter = CsvSourceAdapter(args.input_file, name=args.source_name)
        result = ImportRun(store, config).run(
            adapter,
            state_code=args.state,
            calculator_name=args.calculator,
            region=region,
        )
        if not args.quiet:
            print_import_summary(result)
        return 0 if result.status == "completed" else 1

    if args.command == 'allocate-radii':
        region = _resolve_region(args, config)
        default_radius = args.default_radius
        if default_radius is None:
            default_radius = config.default_radius_m if config else 500.0
        merge = args.merge_duplicates or (config.merge_duplicate_locations if config else False)

        summary = refresh_region_radii(store, region, default_radius, merge)
        if not args.quiet:
            print(f"✅ Allocated radii for {summary.total_points} tolls")
            print(f"   Located:  {summary.located_points}")
            print(f"   At zero:  {summary.zero_radius}")
            print(f"   Repaired: {summary.repaired_points}")
        return 0

    if args.command == 'delete-prices':
        region = _resolve_region(args, config)
        preview = store.preview_region_prices(region)
        if args.dry_run:
            print(f"Would delete {preview['pairs']} pairs, {preview['pair_prices']} pair prices "
                  f"and {preview['toll_prices']} toll prices "
                  f"({preview['tolls_in_region']} tolls in region)")
            return 0

        if not args.yes:
            print(f"⚠️  WARNING: This will delete {preview['pairs']} pairs and "
                  f"{preview['pair_prices'] + preview['toll_prices']} prices!")
            response = input("Are you sure? (yes/no): ")
            if response.lower() != 'yes':
                print("Aborted.")
                return 0

        counts = store.delete_region_prices(region)
        if not args.quiet:
            print(f"✅ Deleted {counts['pairs']} pairs, {counts['pair_prices']} pair prices "
                  f"and {counts['toll_prices']} toll prices")
        return 0

    if args.command == 'export-geojson':
        region = _resolve_region(args, config)
        output_dir = args.output_dir or (config.output_dir if config else Path('outputs'))
        points = store.fetch_points_in_region(region)
        path = GeoJSONExporter(output_dir).export_points(
            points,
            output_name=args.output_name,
            include_circles=args.circles,
        )
        if not args.quiet:
            print(f"📁 Exported {len(points)} tolls to {path}")
        return 0

    if args.command == 'stats':
        show_statistics(store)
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def print_import_summary(result) -> None:
    print(f"\n{'='*60}")
    print(f"Import {result.status}: {result.source_name} ({result.state_code})")
    print(f"{'='*60}")
    print(f"Run ID:         {result.run_id}")
    print(f"Records:        {result.total_records}")
    print(f"Processed:      {result.processed}")
    print(f"Skipped:        {result.skipped}")
    print(f"Pairs touched:  {result.pairs_touched} ({result.pairs_created} new)")
    print(f"Prices:         {result.facts_created} new, {result.facts_updated} updated")
    if result.not_found:
        print(f"\nNot found ({len(result.not_found)}):")
        for label in result.not_found:
            print(f"  - {label}")
    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for error in result.errors:
            print(f"  - {error}")
    print(f"{'='*60}")


def show_statistics(store: TollStore) -> None:
    """Show registry statistics."""
    stats = store.get_statistics()

    print("\n" + "="*60)
    print("📊 Registry Statistics")
    print("="*60)
    print(f"Toll Points:        {stats['total_tolls']}")
    print(f"  with radius:      {stats['tolls_with_radius']}")
    print(f"State Calculators:  {stats['state_calculators']}")
    print(f"Directed Pairs:     {stats['total_pairs']}")
    print(f"Import Runs:        {stats['import_runs']}")
    print()
    print("Prices by Owner:")
    for kind, count in sorted(stats['prices_by_owner'].items()):
        print(f"  {kind:20s}: {count:6d}")
    if stats['pairs_by_state']:
        print()
        print("Pairs by State:")
        for state, count in sorted(stats['pairs_by_state'].items()):
            print(f"  {state:20s}: {count:6d}")
    print("="*60)


if __name__ == "__main__":
    sys.exit(main())
