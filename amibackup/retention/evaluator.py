"""Retention window evaluation.

Decides which backup AMIs fall outside a set of retention windows. Every
window is evaluated independently against the full inventory:

1. The window is cut into half-open slices ``[cursor, cursor + interval)``
   walking forward from ``window.start`` to ``window.stop``.
2. Images whose backup timestamp falls in a slice form that slice's bucket.
3. In a bucket of two or more images the earliest one survives (ties go to
   the lowest image id) and the rest are purged.

The purge set is the union over all windows. Images outside every window are
never purged.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Mapping, Sequence, Tuple

from ..models.image import Image
from ..models.retention_window import RetentionWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BucketDecision:
    """Outcome for one slice holding more than one image."""

    window: RetentionWindow
    slice_start: datetime
    slice_end: datetime
    survivor: str
    purged: Tuple[str, ...]


@dataclass(frozen=True)
class PurgePlan:
    """Images to purge plus the per-bucket decisions that selected them.

    Attributes:
        purge_ids: Image ids to delete (each at most once)
        decisions: One entry per bucket that contributed to the purge set
    """

    purge_ids: FrozenSet[str] = frozenset()
    decisions: Tuple[BucketDecision, ...] = ()

    @property
    def kept_ids(self) -> List[str]:
        """Bucket survivors that no other window purges, sorted."""
        return sorted({d.survivor for d in self.decisions} - self.purge_ids)

    def __len__(self) -> int:
        return len(self.purge_ids)


def build_inventory(images: Iterable[Image]) -> Dict[str, datetime]:
    """Map image id to backup timestamp, skipping unmanaged images."""
    return {image.image_id: image.backup_timestamp for image in images if image.backup_timestamp is not None}


def evaluate(inventory: Mapping[str, datetime], windows: Sequence[RetentionWindow]) -> PurgePlan:
    """Compute the purge plan for an inventory.

    Args:
        inventory: Image id -> backup timestamp
        windows: Retention windows

    Returns:
        PurgePlan, identical for identical input regardless of mapping order
    """
    ordered = sorted(inventory.items(), key=lambda item: (item[1], item[0]))
    times = [when for _, when in ordered]

    purge_ids = set()
    decisions = []
    for window in windows:
        logger.debug(f"Window {window.spec or ''}: {window.describe()}")
        for slice_start, slice_end in window.slices():
            lo = bisect.bisect_left(times, slice_start)
            hi = bisect.bisect_left(times, slice_end)
            if hi - lo < 2:
                continue

            bucket = [image_id for image_id, _ in ordered[lo:hi]]
            survivor, victims = bucket[0], tuple(bucket[1:])
            purge_ids.update(victims)
            decisions.append(
                BucketDecision(
                    window=window,
                    slice_start=slice_start,
                    slice_end=slice_end,
                    survivor=survivor,
                    purged=victims,
                )
            )

    return PurgePlan(purge_ids=frozenset(purge_ids), decisions=tuple(decisions))


def compute_purge_set(inventory: Mapping[str, datetime], windows: Sequence[RetentionWindow]) -> FrozenSet[str]:
    """Return only the image ids to purge."""
    return evaluate(inventory, windows).purge_ids
