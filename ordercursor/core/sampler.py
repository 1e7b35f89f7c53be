"""
Sample the ID range at a handful of checkpoint positions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..config import SAMPLE_CHECKPOINTS, SAMPLE_MAX_CALLS
from .cursor_walker import CursorWalker
from .events import EventHook, null_hook
from .models import SamplePoint

logger = logging.getLogger(__name__)


@dataclass
class SampleRun:
    samples: List[SamplePoint] = field(default_factory=list)
    total_api_calls: int = 0
    sequence_length: Optional[int] = None
    stopped_reason: Optional[str] = None


class DistributionSampler:
    """Builds the (position -> ID range) model used by the estimator."""

    def __init__(
        self,
        walker: CursorWalker,
        max_calls: int = SAMPLE_MAX_CALLS,
        on_event: Optional[EventHook] = None,
    ):
        self.walker = walker
        self.max_calls = max_calls
        self.on_event = on_event or null_hook

    def sample(self, checkpoints: Optional[Sequence[int]] = None) -> SampleRun:
        """
        Walk to each checkpoint in ascending order and record the page's ID range.

        Sampling stops at the end of the sequence, when the shared call budget
        is spent, or on the first failed fetch. Samples already collected are
        kept in every case.
        """
        points = sorted(set(SAMPLE_CHECKPOINTS if checkpoints is None else checkpoints))
        run = SampleRun()

        for checkpoint in points:
            remaining = self.max_calls - run.total_api_calls
            walk = self.walker.advance_to(checkpoint, max_calls=max(0, remaining))
            run.total_api_calls += walk.calls_used

            if walk.error is not None:
                run.stopped_reason = "fetch_failed"
                break
            if not walk.reached:
                run.stopped_reason = "end_of_sequence" if walk.end_of_sequence else "budget_exhausted"
                break

            page = walk.page
            point = SamplePoint(
                position=checkpoint,
                min_id=page.min_id,
                max_id=page.max_id,
                cursor=page.next_cursor,
                page_start=page.start,
                page_end=page.end,
            )
            # One page can serve two close checkpoints; keep the first
            if run.samples and run.samples[-1].page_start == point.page_start:
                continue
            run.samples.append(point)
            self.on_event("sample_taken", {
                "store": self.walker.store_identifier,
                "position": checkpoint,
                "min_id": point.min_id,
                "max_id": point.max_id,
            })

        run.sequence_length = self.walker.sequence_length
        logger.info(
            "Sampled %d checkpoints for %s using %d API calls",
            len(run.samples),
            self.walker.store_identifier,
            run.total_api_calls,
        )
        return run
