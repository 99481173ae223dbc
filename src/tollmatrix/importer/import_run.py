"""
Import run orchestrator.

One run takes one source for one state: it resolves every plaza label in the
feed against the state's region with a single fetch, tags matched points,
expands route-based prices into directed pairs, upserts price facts and
writes everything with a single store commit. Data-quality problems end up
in the structured result; they never abort the run.
"""

import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from shapely.geometry import Polygon

from ..config_manager import TollMatrixConfig
from ..exceptions import TollMatrixError
from ..geo import region_for_state
from ..matching.geo_matcher import GeoBoundedMatcher, MatchMode
from ..matching.pair_expander import expand_pairs
from ..matching.toll_tagging import set_number_and_calculator, update_metadata
from ..pricing.price_matrix import PriceMatrix
from ..store.models import ChangeSet, PriceFactRequest, TollPoint
from ..store.toll_store import TollStore
from .source_adapter import PlazaPriceRecord, SourceAdapter

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Result of one import run."""
    run_id: str
    state_code: str
    source_name: str
    status: str = "running"
    total_records: int = 0
    processed: int = 0
    skipped: int = 0
    not_found: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    points_tagged: int = 0
    pairs_touched: int = 0
    pairs_created: int = 0
    facts_created: int = 0
    facts_updated: int = 0
    total_time_ms: int = 0
    start_time: str = ""
    end_time: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "state_code": self.state_code,
            "source_name": self.source_name,
            "status": self.status,
            "total_records": self.total_records,
            "processed": self.processed,
            "skipped": self.skipped,
            "not_found": list(self.not_found),
            "errors": list(self.errors),
            "points_tagged": self.points_tagged,
            "pairs_touched": self.pairs_touched,
            "pairs_created": self.pairs_created,
            "facts_created": self.facts_created,
            "facts_updated": self.facts_updated,
            "total_time_ms": self.total_time_ms,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


class ImportRun:
    """Runs a source adapter against the registry for one state."""

    def __init__(self, store: TollStore, config: Optional[TollMatrixConfig] = None):
        """Initialize import run.

        Args:
            store: Toll registry
            config: Optional configuration (match mode, region overrides)
        """
        self.store = store
        self.config = config
        self.match_mode = config.match_mode if config else MatchMode.NAME_OR_KEY
        self.region_overrides = config.regions if config else None

    def run(
        self,
        adapter: SourceAdapter,
        state_code: str,
        calculator_name: Optional[str] = None,
        region: Optional[Polygon] = None,
        run_id: Optional[str] = None
    ) -> ImportResult:
        """Import one source.

        Args:
            adapter: Source of canonical price records
            state_code: State the source belongs to
            calculator_name: Name for the state calculator if it must be created
            region: Region to match labels in; defaults to the state's bounds
            run_id: Optional run ID (generated if not provided)

        Returns:
            ImportResult with counts, not-found labels and errors

        Raises:
            InvalidInputError: If the state code is blank or has no known region
            FileNotFoundError: If the source file is missing
            ValueError: If the source lacks required columns; the run is
                recorded as failed first
        """
        state_code = (state_code or "").strip().upper()
        if region is None:
            region = region_for_state(state_code, self.region_overrides)

        if run_id is None:
            run_id = f"import_{state_code}_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"

        start = time.time()
        result = ImportResult(
            run_id=run_id,
            state_code=state_code,
            source_name=adapter.source_name,
            start_time=datetime.now().isoformat(),
        )

        calculator = self.store.get_or_create_state_calculator(
            state_code, calculator_name or f"{state_code} toll calculator"
        )

        try:
            self.store.record_import_run(run_id, state_code, adapter.source_name)
        except sqlite3.Error as e:
            logger.warning(f"Could not record import run {run_id}: {e}")

        logger.info(f"Starting import {run_id}: {adapter.source_name} for {state_code}")

        try:
            self._import(adapter, calculator.id, region, result)
            result.status = "completed"
        except (TollMatrixError, sqlite3.Error) as e:
            result.status = "failed"
            result.errors.append(f"commit failed: {e}")
            logger.error(f"Import {run_id} failed: {e}")
        except (ValueError, OSError) as e:
            # Unreadable source: record the failure and re-raise
            result.status = "failed"
            result.errors.append(f"source failed: {e}")
            logger.error(f"Import {run_id} could not read {adapter.source_name}: {e}")
            raise
        finally:
            if result.status == "running":
                result.status = "failed"
            result.total_time_ms = int((time.time() - start) * 1000)
            result.end_time = datetime.now().isoformat()

            try:
                self.store.update_import_run(run_id, result.status, result.to_dict())
            except sqlite3.Error as e:
                logger.warning(f"Could not update import run {run_id}: {e}")

        logger.info(
            f"Import {run_id} {result.status}: {result.processed}/{result.total_records} processed, "
            f"{len(result.not_found)} labels not found, {result.skipped} skipped, "
            f"{len(result.errors)} errors"
        )
        return result

    def _import(
        self,
        adapter: SourceAdapter,
        calculator_id: str,
        region: Polygon,
        result: ImportResult
    ) -> None:
        records: List[PlazaPriceRecord] = list(adapter.records())
        result.total_records = len(records) + len(adapter.errors)
        result.errors.extend(adapter.errors)

        labels = set()
        for record in records:
            labels.add(record.entry_label)
            if record.exit_label:
                labels.add(record.exit_label)

        matcher = GeoBoundedMatcher(self.store, self.match_mode)
        matches = matcher.find_matches(labels, region) if labels else {}

        matrix = PriceMatrix(self.store)
        dirty: Dict[str, TollPoint] = {}
        pair_requests: Dict[Tuple[str, str], List[PriceFactRequest]] = {}
        not_found = set()

        for record in records:
            if record.amount is None or not record.amount > 0:
                result.skipped += 1
                logger.debug(f"Skipping non-positive amount {record.amount} for '{record.entry_label}'")
                continue

            entries = matches.get(record.entry_label, [])
            if not entries:
                not_found.add(record.entry_label)
                continue

            exits: List[TollPoint] = []
            if record.is_route:
                exits = matches.get(record.exit_label, [])
                if not exits:
                    not_found.add(record.exit_label)
                    continue

            # Route feeds carry the entry plaza number only
            for point in set_number_and_calculator(entries, record.number, calculator_id):
                dirty[point.id] = point
            for point in update_metadata(
                entries + exits,
                website_url=record.website_url,
                payment_method=record.payment_method,
            ):
                dirty[point.id] = point

            request = record.to_request()

            if record.is_route:
                for point in set_number_and_calculator(exits, None, calculator_id):
                    dirty[point.id] = point
                expanded = expand_pairs(entries, exits, lambda entry, exit_point: [request])
                for key, requests in expanded.items():
                    pair_requests.setdefault(key, []).extend(requests)
            else:
                for point in entries:
                    matrix.set_price(point, **request.model_dump())

            result.processed += 1

        pairs = matrix.upsert_pair_prices(pair_requests, calculator_id)
        result.pairs_touched = len(pairs)
        result.not_found = sorted(not_found)

        changes = matrix.pending_changes()
        changes = ChangeSet(points=list(dirty.values())).merge(changes)
        result.points_tagged = len(changes.points)

        commit_result = self.store.commit(changes)
        matrix.mark_committed(commit_result.pair_id_remap)

        result.pairs_created = commit_result.pairs_created
        result.facts_created = commit_result.facts_created
        result.facts_updated = commit_result.facts_updated
        result.errors.extend(commit_result.failures)
