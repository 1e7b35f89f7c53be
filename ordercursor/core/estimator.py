"""
Position estimation from sampled ID ranges.
"""

import math
from typing import NamedTuple, Optional, Sequence, Tuple

from ..config import BINARY_EXTRAPOLATION_SPAN, NEWER_THAN_FIRST_MARGIN, WINDOW_RADIUS
from .models import EstimateBasis, PositionEstimate, SamplePoint


def estimate(
    samples: Sequence[SamplePoint],
    target_id: int,
    newer_margin: int = NEWER_THAN_FIRST_MARGIN,
) -> PositionEstimate:
    """
    Estimate where `target_id` sits in the descending sequence.

    Args:
        samples: Sample points in ascending position order
        target_id: Order ID to locate
        newer_margin: Positions subtracted from the first sample when the
            target is newer than anything sampled

    Returns:
        PositionEstimate with the guessed position and the branch that produced it
    """
    if not samples:
        return PositionEstimate(position=1, basis=EstimateBasis.NO_SAMPLES)

    for sample in samples:
        if sample.min_id <= target_id <= sample.max_id:
            return PositionEstimate(position=sample.position, basis=EstimateBasis.WITHIN_SAMPLE)

    for current, following in zip(samples, samples[1:]):
        if following.max_id <= target_id <= current.min_id:
            id_range = current.min_id - following.max_id
            position_range = following.position - current.position
            if id_range <= 0:
                return PositionEstimate(position=current.position, basis=EstimateBasis.INTERPOLATED)
            offset = (current.min_id - target_id) / id_range * position_range
            return PositionEstimate(
                position=math.floor(current.position + offset),
                basis=EstimateBasis.INTERPOLATED,
            )

    first, last = samples[0], samples[-1]

    if target_id > first.max_id:
        return PositionEstimate(
            position=max(0, first.position - newer_margin),
            basis=EstimateBasis.NEWER_THAN_FIRST,
        )

    if target_id < last.min_id:
        density = 1.0
        if len(samples) >= 2:
            previous = samples[-2]
            position_delta = last.position - previous.position
            id_delta = previous.min_id - last.min_id
            if position_delta > 0 and id_delta > 0:
                density = id_delta / position_delta
        position = last.position + (last.min_id - target_id) / density
        return PositionEstimate(position=math.floor(position), basis=EstimateBasis.EXTRAPOLATED)

    return PositionEstimate(position=first.position, basis=EstimateBasis.FALLBACK)


def estimate_position(samples: Sequence[SamplePoint], target_id: int) -> int:
    """Estimated zero-based position of `target_id` (1 when nothing was sampled)."""
    return estimate(samples, target_id).position


class SearchBracket(NamedTuple):
    """
    Position range for the binary phase.

    A pinned bound is known to be exact: every position before a pinned
    `lower` holds a larger ID than the target, every position after a pinned
    `upper` a smaller one (or does not exist).
    """

    lower: int
    upper: int
    lower_pinned: bool = False
    upper_pinned: bool = False


def search_bracket(
    samples: Sequence[SamplePoint],
    target_id: int,
    sequence_length: Optional[int] = None,
    span: int = BINARY_EXTRAPOLATION_SPAN,
    estimated: Optional[int] = None,
    radius: int = WINDOW_RADIUS,
) -> SearchBracket:
    """
    Position range the binary phase has to cover.

    Sampled pages whose IDs bracket the target are excluded, since the
    sampler already scanned them. Past the last sample the range extends to
    the end of the sequence when it is known, otherwise by `span` positions
    (and never short of the estimate plus one window radius).
    """
    last_position = sequence_length - 1 if sequence_length else None
    lower_pinned = upper_pinned = False

    if not samples:
        lower, upper = 0, span
    else:
        first, last = samples[0], samples[-1]
        lower = upper = None

        for sample in samples:
            if sample.min_id <= target_id <= sample.max_id:
                lower, upper = sample.page_start, sample.page_end - 1
                break

        if lower is None:
            for current, following in zip(samples, samples[1:]):
                if following.max_id <= target_id <= current.min_id:
                    lower, upper = current.page_end, following.page_start - 1
                    lower_pinned = upper_pinned = True
                    break

        if lower is None:
            if target_id > first.max_id:
                lower, upper = 0, max(0, first.page_start - 1)
                upper_pinned = True
            elif target_id < last.min_id:
                lower = last.page_end
                lower_pinned = True
                if last_position is not None:
                    upper = last_position
                else:
                    upper = last.page_end + span
                    if estimated is not None:
                        upper = max(upper, estimated + radius)
            else:
                lower, upper = 0, last.page_end - 1

    if last_position is not None and upper >= last_position:
        upper = last_position
        upper_pinned = True
    return SearchBracket(lower, upper, lower_pinned or lower == 0, upper_pinned)


def search_bounds(
    samples: Sequence[SamplePoint],
    target_id: int,
    sequence_length: Optional[int] = None,
    span: int = BINARY_EXTRAPOLATION_SPAN,
    estimated: Optional[int] = None,
    radius: int = WINDOW_RADIUS,
) -> Tuple[int, int]:
    """(lower, upper) of `search_bracket`."""
    bracket = search_bracket(samples, target_id, sequence_length, span, estimated, radius)
    return bracket.lower, bracket.upper
