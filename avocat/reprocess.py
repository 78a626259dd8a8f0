"""
On-demand healing of purchases with missing documents.

An item is left alone only when it is completed and all five artifact slots
exist, or when it failed for a reason that generating again cannot fix. Any
other item is regenerated from scratch, every variant and format, rather than
patching the missing slots.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from .models import ItemStatus, utcnow

logger = logging.getLogger(__name__)


def needs_regeneration(item):
    return item.retryable and not item.is_fully_satisfied()


@dataclass
class SweepSummary:
    processed: int = 0
    errors: List[str] = field(default_factory=list)


class ReprocessingSweep:
    def __init__(self, orchestrator, ledger):
        self.orchestrator = orchestrator
        self.ledger = ledger

    def reprocess_purchase(self, entry):
        logger.info(f"Reprocessing purchase {entry.id} (user {entry.user_id}, {len(entry.items)} items)")
        for item in entry.items:
            missing = item.missing_kinds()
            if missing and item.status == ItemStatus.COMPLETED:
                logger.info(f"Item '{item.name}' is missing {', '.join(missing)}, regenerating all documents")
        return self.orchestrator.process(entry, should_generate=needs_regeneration, reprocessedAt=utcnow())

    def reprocess_all(self, status=None):
        """Reprocess every purchase, or only those with the given status."""
        entries = self.ledger.find(status=status)
        logger.info(f"Found {len(entries)} purchases to reprocess")
        summary = SweepSummary()
        for entry in entries:
            try:
                self.reprocess_purchase(entry)
                summary.processed += 1
            except Exception as e:
                logger.error(f"Error reprocessing purchase {entry.id}: {e}")
                summary.errors.append(entry.id)
        return summary
