"""
SQLite-backed toll registry.

Provides the capabilities the matching, radius and pricing engines rely on:
region fetch by point-in-polygon containment, fetch by id, get-or-create of
state calculators, and an atomic commit of everything an import run changed.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable, Tuple

from shapely.geometry import Point, Polygon
from shapely.prepared import prep

from ..exceptions import InvalidInputError, StoreConflictError
from ..geo import is_valid_lat_lon, validate_region
from .migrations import apply_schema
from .models import (
    ChangeSet,
    DirectedTollPair,
    OwnerKind,
    PriceFact,
    PriceOwner,
    StateCalculator,
    TollPoint,
    make_owner,
    new_id,
)

logger = logging.getLogger(__name__)

# Stay below SQLite's host-parameter limit on older builds
MAX_SQL_PARAMS = 900


def _chunks(items: List[Any], size: int = MAX_SQL_PARAMS) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass
class CommitResult:
    """Outcome of a store commit."""
    points_written: int = 0
    pairs_created: int = 0
    pairs_existing: int = 0
    facts_created: int = 0
    facts_updated: int = 0
    failures: List[str] = field(default_factory=list)
    pair_id_remap: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "points_written": self.points_written,
            "pairs_created": self.pairs_created,
            "pairs_existing": self.pairs_existing,
            "facts_created": self.facts_created,
            "facts_updated": self.facts_updated,
            "failures": list(self.failures),
        }


class TollStore:
    """Persistent toll registry with prices."""

    def __init__(self, db_path: Path):
        """Initialize toll store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        apply_schema(self.db_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection; commits on success, rolls back on error."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=30.0,
            isolation_level="DEFERRED"
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Toll points
    # ------------------------------------------------------------------

    @staticmethod
    def _point_params(point: TollPoint) -> Tuple:
        return (
            point.id,
            point.name,
            point.key,
            point.number,
            point.latitude,
            point.longitude,
            point.search_radius_m,
            point.state_calculator_id,
            point.website_url,
            point.payment_method.model_dump_json() if point.payment_method else None,
        )

    _UPSERT_POINT_SQL = """
        INSERT INTO tolls (
            id, name, key, number, latitude, longitude,
            search_radius_m, state_calculator_id, website_url, payment_method_json
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            key = excluded.key,
            number = excluded.number,
            latitude = excluded.latitude,
            longitude = excluded.longitude,
            search_radius_m = excluded.search_radius_m,
            state_calculator_id = excluded.state_calculator_id,
            website_url = excluded.website_url,
            payment_method_json = excluded.payment_method_json
    """

    def add_points(self, points: Iterable[TollPoint]) -> int:
        """Insert or replace registry points.

        Args:
            points: Points to write

        Returns:
            Number of points written
        """
        rows = [self._point_params(p) for p in points]
        if not rows:
            return 0
        with self._get_connection() as conn:
            conn.executemany(self._UPSERT_POINT_SQL, rows)
        logger.debug(f"Wrote {len(rows)} toll points")
        return len(rows)

    def fetch_points_in_region(self, region: Polygon) -> List[TollPoint]:
        """Fetch every toll point whose location lies inside the region.

        A bounding-box prefilter runs in SQL; exact containment is tested
        against the polygon. Points on the boundary are not contained.

        Args:
            region: Polygon of (lon, lat) coordinates

        Returns:
            List of TollPoint in store order
        """
        region = validate_region(region)
        min_lon, min_lat, max_lon, max_lat = region.bounds

        with self._get_connection() as conn:
            rows = conn.execute(
                """SELECT * FROM tolls
                   WHERE latitude IS NOT NULL AND longitude IS NOT NULL
                     AND longitude BETWEEN ? AND ?
                     AND latitude BETWEEN ? AND ?
                   ORDER BY rowid""",
                (min_lon, max_lon, min_lat, max_lat)
            ).fetchall()

        prepared = prep(region)
        points = []
        for row in rows:
            if not is_valid_lat_lon(row["latitude"], row["longitude"]):
                continue
            if prepared.contains(Point(row["longitude"], row["latitude"])):
                points.append(TollPoint.from_db_row(row))

        logger.debug(f"Region fetch returned {len(points)} of {len(rows)} candidate points")
        return points

    def fetch_points(self, ids: Iterable[str]) -> List[TollPoint]:
        """Fetch toll points by id; unknown ids are absent from the result."""
        id_list = list(dict.fromkeys(ids))
        points = []
        with self._get_connection() as conn:
            for chunk in _chunks(id_list):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT * FROM tolls WHERE id IN ({placeholders})",
                    chunk
                ).fetchall()
                points.extend(TollPoint.from_db_row(row) for row in rows)
        return points

    # ------------------------------------------------------------------
    # State calculators
    # ------------------------------------------------------------------

    def get_state_calculator(self, state_code: str) -> Optional[StateCalculator]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM state_calculators WHERE state_code = ?",
                (state_code,)
            ).fetchone()
            return StateCalculator.from_db_row(row) if row else None

    def get_or_create_state_calculator(self, state_code: str, name: str) -> StateCalculator:
        """Get the calculator for a state, creating it on first use.

        Args:
            state_code: State code (e.g. "NY", "OH")
            name: Calculator name, used only when creating

        Returns:
            Existing or newly created StateCalculator

        Raises:
            InvalidInputError: If state_code or name is blank
        """
        if not state_code or not state_code.strip():
            raise InvalidInputError("State code cannot be empty")
        if not name or not name.strip():
            raise InvalidInputError("Calculator name cannot be empty")

        state_code = state_code.strip().upper()
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO state_calculators (id, name, state_code)
                   VALUES (?, ?, ?)
                   ON CONFLICT(state_code) DO NOTHING""",
                (new_id(), name.strip(), state_code)
            )
            row = conn.execute(
                "SELECT * FROM state_calculators WHERE state_code = ?",
                (state_code,)
            ).fetchone()
            return StateCalculator.from_db_row(row)

    # ------------------------------------------------------------------
    # Pairs and prices
    # ------------------------------------------------------------------

    def fetch_pairs(self, ids: Iterable[str]) -> List[DirectedTollPair]:
        """Fetch directed toll pairs by id; unknown ids are absent."""
        id_list = list(dict.fromkeys(ids))
        pairs = []
        with self._get_connection() as conn:
            for chunk in _chunks(id_list):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT * FROM toll_pairs WHERE id IN ({placeholders})",
                    chunk
                ).fetchall()
                pairs.extend(DirectedTollPair.from_db_row(row) for row in rows)
        return pairs

    def find_pairs(
        self,
        state_calculator_id: str,
        keys: Iterable[Tuple[str, str]]
    ) -> Dict[Tuple[str, str], DirectedTollPair]:
        """Find existing pairs for (from, to) keys under one calculator.

        Args:
            state_calculator_id: Owning calculator
            keys: (from_toll_id, to_toll_id) tuples

        Returns:
            Dict keyed by (from_toll_id, to_toll_id) for the pairs that exist
        """
        wanted = set(keys)
        if not wanted:
            return {}

        from_ids = sorted({k[0] for k in wanted})
        found: Dict[Tuple[str, str], DirectedTollPair] = {}
        with self._get_connection() as conn:
            for chunk in _chunks(from_ids, MAX_SQL_PARAMS - 1):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"""SELECT * FROM toll_pairs
                        WHERE state_calculator_id = ?
                          AND from_toll_id IN ({placeholders})""",
                    [state_calculator_id, *chunk]
                ).fetchall()
                for row in rows:
                    key = (row["from_toll_id"], row["to_toll_id"])
                    if key in wanted:
                        found[key] = DirectedTollPair.from_db_row(row)
        return found

    def fetch_price_facts(self, owners: Iterable[PriceOwner]) -> Dict[PriceOwner, List[PriceFact]]:
        """Fetch all price facts attached to the given owners.

        Returns:
            Dict with an entry (possibly empty) for every requested owner
        """
        owner_list = list(dict.fromkeys(owners))
        result: Dict[PriceOwner, List[PriceFact]] = {owner: [] for owner in owner_list}
        if not owner_list:
            return result

        owner_ids = sorted({owner.id for owner in owner_list})
        with self._get_connection() as conn:
            for chunk in _chunks(owner_ids):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"""SELECT * FROM price_facts
                        WHERE owner_id IN ({placeholders})
                        ORDER BY rowid""",
                    chunk
                ).fetchall()
                for row in rows:
                    owner = make_owner(row["owner_kind"], row["owner_id"])
                    if owner in result:
                        result[owner].append(PriceFact.from_db_row(row))
        return result

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def commit(self, changes: ChangeSet) -> CommitResult:
        """Write a change set in one transaction.

        Pairs are inserted with ON CONFLICT DO NOTHING and re-selected by
        their unique key, so a pair created concurrently by another run is
        reused rather than duplicated. A constraint failure on one pair or
        fact rolls back only that entity (savepoint) and is reported in
        ``failures``; everything else is committed atomically.

        Args:
            changes: Points, pairs and facts to write

        Returns:
            CommitResult with counts and failures
        """
        result = CommitResult()
        if changes.is_empty():
            return result

        failed_pairs = set()

        with self._get_connection() as conn:
            # Savepoints below nest inside this transaction
            conn.execute("BEGIN")

            if changes.points:
                try:
                    conn.executemany(
                        self._UPSERT_POINT_SQL,
                        [self._point_params(p) for p in changes.points]
                    )
                except sqlite3.IntegrityError as e:
                    raise StoreConflictError(f"Toll point update rejected: {e}") from e
                result.points_written = len(changes.points)

            for pair in changes.pairs:
                try:
                    with self._savepoint(conn):
                        cursor = conn.execute(
                            """INSERT INTO toll_pairs (
                                   id, from_toll_id, to_toll_id, state_calculator_id
                               ) VALUES (?, ?, ?, ?)
                               ON CONFLICT DO NOTHING""",
                            (pair.id, pair.from_toll_id, pair.to_toll_id, pair.state_calculator_id)
                        )
                        row = conn.execute(
                            """SELECT id FROM toll_pairs
                               WHERE from_toll_id = ? AND to_toll_id = ?
                                 AND state_calculator_id = ?""",
                            (pair.from_toll_id, pair.to_toll_id, pair.state_calculator_id)
                        ).fetchone()
                except sqlite3.IntegrityError as e:
                    failed_pairs.add(pair.id)
                    result.failures.append(f"pair {pair.from_toll_id}->{pair.to_toll_id}: {e}")
                    logger.warning(f"Pair {pair.from_toll_id}->{pair.to_toll_id} rejected: {e}")
                    continue

                if row is None:
                    # Conflict on id with a different key
                    failed_pairs.add(pair.id)
                    result.failures.append(f"pair {pair.from_toll_id}->{pair.to_toll_id}: id conflict")
                    continue

                if cursor.rowcount == 1:
                    result.pairs_created += 1
                else:
                    result.pairs_existing += 1
                if row["id"] != pair.id:
                    result.pair_id_remap[pair.id] = row["id"]
                    pair.id = row["id"]

            for fact in changes.facts:
                if fact.owner_kind is OwnerKind.PAIR:
                    if fact.owner_id in failed_pairs:
                        continue
                    fact.owner_id = result.pair_id_remap.get(fact.owner_id, fact.owner_id)
                try:
                    with self._savepoint(conn):
                        created = self._write_fact(conn, fact)
                except sqlite3.IntegrityError as e:
                    result.failures.append(f"price {fact.owner_kind.value}:{fact.owner_id}: {e}")
                    logger.warning(f"Price fact for {fact.owner_kind.value} {fact.owner_id} rejected: {e}")
                    continue
                if created:
                    result.facts_created += 1
                else:
                    result.facts_updated += 1

        logger.info(
            f"Committed {result.points_written} points, "
            f"{result.pairs_created} new pairs, "
            f"{result.facts_created} new / {result.facts_updated} updated prices"
        )
        return result

    @staticmethod
    @contextmanager
    def _savepoint(conn: sqlite3.Connection):
        conn.execute("SAVEPOINT entity")
        try:
            yield
        except Exception:
            conn.execute("ROLLBACK TO SAVEPOINT entity")
            conn.execute("RELEASE SAVEPOINT entity")
            raise
        conn.execute("RELEASE SAVEPOINT entity")

    @staticmethod
    def _write_fact(conn: sqlite3.Connection, fact: PriceFact) -> bool:
        """Update the fact with the same owner and dimensions, or insert it.

        Returns:
            True if a new row was inserted
        """
        dims = (
            fact.owner_kind.value,
            fact.owner_id,
            int(fact.payment_type),
            int(fact.axle_class),
            int(fact.day_of_week_from),
            int(fact.day_of_week_to),
            int(fact.time_of_day),
        )
        values = (
            fact.amount,
            fact.time_from.isoformat() if fact.time_from else None,
            fact.time_to.isoformat() if fact.time_to else None,
            fact.description,
        )
        cursor = conn.execute(
            """UPDATE price_facts
               SET amount = ?, time_from = ?, time_to = ?, description = ?
               WHERE owner_kind = ? AND owner_id = ?
                 AND payment_type = ? AND axle_class = ?
                 AND day_of_week_from = ? AND day_of_week_to = ?
                 AND time_of_day = ?""",
            values + dims
        )
        if cursor.rowcount > 0:
            return False

        conn.execute(
            """INSERT INTO price_facts (
                   id, owner_kind, owner_id, payment_type, axle_class,
                   day_of_week_from, day_of_week_to, time_of_day,
                   amount, time_from, time_to, description
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (fact.id,) + dims + values
        )
        return True

    # ------------------------------------------------------------------
    # Region-scoped delete
    # ------------------------------------------------------------------

    def _region_price_targets(
        self,
        conn: sqlite3.Connection,
        region: Polygon
    ) -> Tuple[List[str], List[str]]:
        toll_ids = [p.id for p in self.fetch_points_in_region(region)]
        toll_set = set(toll_ids)

        pair_ids = []
        for chunk in _chunks(toll_ids):
            placeholders = ",".join("?" * len(chunk))
            rows = conn.execute(
                f"SELECT id, to_toll_id FROM toll_pairs WHERE from_toll_id IN ({placeholders})",
                chunk
            ).fetchall()
            pair_ids.extend(row["id"] for row in rows if row["to_toll_id"] in toll_set)
        return toll_ids, pair_ids

    @staticmethod
    def _count_facts(conn: sqlite3.Connection, kind: OwnerKind, owner_ids: List[str]) -> int:
        total = 0
        for chunk in _chunks(owner_ids):
            placeholders = ",".join("?" * len(chunk))
            total += conn.execute(
                f"""SELECT COUNT(*) FROM price_facts
                    WHERE owner_kind = ? AND owner_id IN ({placeholders})""",
                [kind.value, *chunk]
            ).fetchone()[0]
        return total

    def preview_region_prices(self, region: Polygon) -> Dict[str, int]:
        """Count what delete_region_prices would remove, without deleting."""
        with self._get_connection() as conn:
            toll_ids, pair_ids = self._region_price_targets(conn, region)
            return {
                "tolls_in_region": len(toll_ids),
                "pairs": len(pair_ids),
                "toll_prices": self._count_facts(conn, OwnerKind.TOLL, toll_ids),
                "pair_prices": self._count_facts(conn, OwnerKind.PAIR, pair_ids),
            }

    def delete_region_prices(self, region: Polygon) -> Dict[str, int]:
        """Delete prices and pairs for every toll inside a region.

        Removes facts attached directly to tolls in the region, every pair
        whose both endpoints lie in the region, and the facts on those pairs.

        Args:
            region: Region polygon

        Returns:
            Dict with counts of deleted pairs and prices
        """
        counts = {"pairs": 0, "toll_prices": 0, "pair_prices": 0}
        with self._get_connection() as conn:
            toll_ids, pair_ids = self._region_price_targets(conn, region)

            for kind, owner_ids, counter in (
                (OwnerKind.TOLL, toll_ids, "toll_prices"),
                (OwnerKind.PAIR, pair_ids, "pair_prices"),
            ):
                for chunk in _chunks(owner_ids):
                    placeholders = ",".join("?" * len(chunk))
                    cursor = conn.execute(
                        f"""DELETE FROM price_facts
                            WHERE owner_kind = ? AND owner_id IN ({placeholders})""",
                        [kind.value, *chunk]
                    )
                    counts[counter] += cursor.rowcount

            for chunk in _chunks(pair_ids):
                placeholders = ",".join("?" * len(chunk))
                cursor = conn.execute(
                    f"DELETE FROM toll_pairs WHERE id IN ({placeholders})",
                    chunk
                )
                counts["pairs"] += cursor.rowcount

        logger.info(
            f"Deleted {counts['pairs']} pairs, {counts['pair_prices']} pair prices "
            f"and {counts['toll_prices']} toll prices"
        )
        return counts

    # ------------------------------------------------------------------
    # Import history and statistics
    # ------------------------------------------------------------------

    def record_import_run(self, run_id: str, state_code: str, source_name: str) -> None:
        """Record the start of an import run."""
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO import_history (
                       run_id, state_code, source_name, start_time, status
                   ) VALUES (?, ?, ?, ?, ?)""",
                (run_id, state_code, source_name, datetime.now().isoformat(), "running")
            )

    def update_import_run(
        self,
        run_id: str,
        status: str,
        results: Optional[Dict[str, Any]] = None
    ) -> None:
        """Update an import run's status and results."""
        with self._get_connection() as conn:
            conn.execute(
                """UPDATE import_history
                   SET end_time = ?, status = ?, results = ?
                   WHERE run_id = ?""",
                (
                    datetime.now().isoformat(),
                    status,
                    json.dumps(results) if results else None,
                    run_id,
                )
            )

    def get_import_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM import_history WHERE run_id = ?",
                (run_id,)
            ).fetchone()
            if row is None:
                return None
            record = dict(row)
            record["results"] = json.loads(row["results"]) if row["results"] else None
            return record

    def get_statistics(self) -> Dict[str, Any]:
        """Get registry statistics.

        Returns:
            Dict with statistics
        """
        with self._get_connection() as conn:
            stats = {}

            stats["total_tolls"] = conn.execute(
                "SELECT COUNT(*) FROM tolls"
            ).fetchone()[0]

            stats["tolls_with_radius"] = conn.execute(
                "SELECT COUNT(*) FROM tolls WHERE search_radius_m > 0"
            ).fetchone()[0]

            stats["state_calculators"] = conn.execute(
                "SELECT COUNT(*) FROM state_calculators"
            ).fetchone()[0]

            stats["total_pairs"] = conn.execute(
                "SELECT COUNT(*) FROM toll_pairs"
            ).fetchone()[0]

            owner_counts = conn.execute(
                """SELECT owner_kind, COUNT(*) AS count
                   FROM price_facts
                   GROUP BY owner_kind"""
            ).fetchall()
            stats["prices_by_owner"] = {row[0]: row[1] for row in owner_counts}

            pairs_by_state = conn.execute(
                """SELECT sc.state_code, COUNT(tp.id) AS count
                   FROM state_calculators sc
                   LEFT JOIN toll_pairs tp ON tp.state_calculator_id = sc.id
                   GROUP BY sc.state_code"""
            ).fetchall()
            stats["pairs_by_state"] = {row[0]: row[1] for row in pairs_by_state}

            stats["import_runs"] = conn.execute(
                "SELECT COUNT(*) FROM import_history"
            ).fetchone()[0]

            return stats
