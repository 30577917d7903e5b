"""
Recomputation sweep.

Privileged maintenance job that refreshes stale or missing artifacts.
It never touches the quota ledger.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from .cache import ArtifactCache
from .errors import GenerationFailed, GeneratorBusy, StoreUnavailable
from .orchestrator import SummaryOrchestrator

logger = logging.getLogger(__name__)

STALE_SCAN_LIMIT = 2000
MISSING_SCAN_LIMIT = 1000


@dataclass
class SweepResult:
    """Outcome of one sweep run."""
    processed_resource_ids: List[str] = field(default_factory=list)
    skipped_resource_ids: List[str] = field(default_factory=list)
    failed_resource_ids: List[str] = field(default_factory=list)


class RecomputationSweep:
    """Scans for stale and missing artifacts and regenerates a bounded batch."""

    def __init__(self, cache: ArtifactCache, orchestrator: SummaryOrchestrator):
        self.cache = cache
        self.orchestrator = orchestrator

    def candidates(self, batch_size: int) -> List[str]:
        """Stale resources first (oldest first), then resources never summarized.

        Raises:
            StoreUnavailable: If the scan cannot read the store
        """
        stale = self.cache.stale_resource_ids(STALE_SCAN_LIMIT)
        selected = stale[:batch_size]
        if len(selected) < batch_size:
            for resource_id in self.cache.missing_resource_ids(MISSING_SCAN_LIMIT):
                if resource_id not in selected:
                    selected.append(resource_id)
                if len(selected) >= batch_size:
                    break
        return selected

    def run(self, batch_size: int) -> SweepResult:
        """Regenerate up to batch_size artifacts.

        A failure on one resource is logged and the batch continues.

        Raises:
            StoreUnavailable: If the scan phase fails; nothing is processed
        """
        if batch_size < 1:
            return SweepResult()

        result = SweepResult()
        for resource_id in self.candidates(batch_size):
            try:
                stored = self.orchestrator.recompute(resource_id)
            except (GenerationFailed, GeneratorBusy, StoreUnavailable) as e:
                logger.warning("Sweep could not refresh %s: %s", resource_id, e)
                result.failed_resource_ids.append(resource_id)
                continue

            if stored is None:
                logger.info("Sweep skipped %s: no documents", resource_id)
                result.skipped_resource_ids.append(resource_id)
            else:
                result.processed_resource_ids.append(resource_id)

        logger.info(
            "Sweep finished: %d processed, %d skipped, %d failed",
            len(result.processed_resource_ids),
            len(result.skipped_resource_ids),
            len(result.failed_resource_ids),
        )
        return result
