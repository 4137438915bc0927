"""
Readings retention.

Keeps the readings collection bounded by deleting the oldest rows beyond
READINGS_MAX_ROWS. Pruning runs opportunistically after a fraction of
ingestions (RETENTION_PRUNE_PROBABILITY) and on demand through the cleanup
endpoint. Audit records are never pruned.
"""

import random
from dataclasses import dataclass
from typing import Callable

from app.core import get_logger
from app.services.datastore.base import Datastore
from app.services.observability import record_retention_deleted, track_execution_time

logger = get_logger(__name__)


@dataclass
class PruneResult:
    previous: int
    deleted: int
    remaining: int


class RetentionService:

    def __init__(
        self,
        datastore: Datastore,
        max_rows: int,
        probability: float = 0.1,
        rng: Callable[[], float] = random.random,
    ):
        self.datastore = datastore
        self.max_rows = max_rows
        self.probability = probability
        self.rng = rng

    @track_execution_time("gas_retention_duration_seconds")
    async def prune(self, keep: int = None) -> PruneResult:
        """
        Delete the oldest readings so at most ``keep`` remain.

        Args:
            keep: Rows to keep (defaults to READINGS_MAX_ROWS)

        Raises:
            DatastoreException: the count, lookup or delete failed
        """
        keep = self.max_rows if keep is None else keep
        count = await self.datastore.count_readings()
        if count <= keep:
            return PruneResult(previous=count, deleted=0, remaining=count)

        ids = await self.datastore.oldest_reading_ids(count - keep)
        deleted = await self.datastore.delete_readings(ids)
        record_retention_deleted(deleted)

        logger.info("Readings pruned", previous=count, deleted=deleted, keep=keep)
        return PruneResult(previous=count, deleted=deleted, remaining=count - deleted)

    async def maybe_prune(self) -> bool:
        """Prune with the configured probability. Errors are logged, never raised."""
        if self.rng() >= self.probability:
            return False
        try:
            await self.prune()
        except Exception as e:
            logger.warning("Opportunistic retention failed", error=str(e))
            return False
        return True
