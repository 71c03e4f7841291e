from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet

from .config import LotteryConfig
from .project_constants import MINUTES_PER_BLOCK


class RoundStatus(str, enum.Enum):
    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"
    CONFIRMING = "confirming"
    PAYING = "paying"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL: FrozenSet[RoundStatus] = frozenset(
    {RoundStatus.COMPLETED, RoundStatus.FAILED}
)

_NEXT: Dict[RoundStatus, RoundStatus] = {
    RoundStatus.PENDING: RoundStatus.OPEN,
    RoundStatus.OPEN: RoundStatus.CLOSED,
    RoundStatus.CLOSED: RoundStatus.CONFIRMING,
    RoundStatus.CONFIRMING: RoundStatus.PAYING,
    RoundStatus.PAYING: RoundStatus.COMPLETED,
}


@dataclass(frozen=True)
class RoundInfo:
    id: str
    start_block: int
    sales_close_block: int
    draw_block: int
    payout_block: int
    next_round_start: int
    blocks_until_sales_close: int
    blocks_until_draw: int
    blocks_until_payout: int
    status: RoundStatus


@dataclass(frozen=True)
class TimeEstimate:
    minutes: int
    hours: float
    formatted: str


def lottery_id(draw_block: int) -> str:
    return f"lottery-{draw_block}"


def compute_round(
    current_block: int, config: LotteryConfig, has_note: bool = False
) -> RoundInfo:
    """
    Derive the round containing `current_block`.

    Rounds start on multiples of `block_cadence`; the draw block is the next
    multiple. `has_note` tells whether an announcement note is being tracked,
    which is the only thing separating `open` from `pending`.
    """
    if current_block < 0:
        raise ValueError(f"Block height must be non-negative, got {current_block}")
    cadence = config.block_cadence
    draw_block = (current_block // cadence) * cadence + cadence
    return round_for_draw_block(draw_block, current_block, config, has_note)


def round_for_draw_block(
    draw_block: int, current_block: int, config: LotteryConfig, has_note: bool = False
) -> RoundInfo:
    """Status of the round drawn at `draw_block`, seen from `current_block`."""
    if current_block < 0:
        raise ValueError(f"Block height must be non-negative, got {current_block}")
    cadence = config.block_cadence
    if draw_block < cadence or draw_block % cadence:
        raise ValueError(f"Draw block {draw_block} is not a multiple of {cadence}")

    start = draw_block - cadence
    sales_close_block = draw_block - config.sales_close_blocks_before_draw
    # Single threshold for both paying and completed.
    payout_block = draw_block + config.confirmations_required

    if current_block >= payout_block:
        status = RoundStatus.COMPLETED
    elif current_block >= draw_block:
        status = RoundStatus.CONFIRMING
    elif current_block >= sales_close_block:
        status = RoundStatus.CLOSED
    elif has_note:
        status = RoundStatus.OPEN
    else:
        status = RoundStatus.PENDING

    return RoundInfo(
        id=lottery_id(draw_block),
        start_block=start,
        sales_close_block=sales_close_block,
        draw_block=draw_block,
        payout_block=payout_block,
        next_round_start=draw_block,
        blocks_until_sales_close=max(0, sales_close_block - current_block),
        blocks_until_draw=max(0, draw_block - current_block),
        blocks_until_payout=max(0, payout_block - current_block),
        status=status,
    )


def advance_status(current: RoundStatus, target: RoundStatus) -> RoundStatus:
    """Move a round one step along its lifecycle, or into `failed`."""
    if current in _TERMINAL:
        raise ValueError(f"Round is already {current.value}; cannot move to {target.value}")
    if target is RoundStatus.FAILED or _NEXT.get(current) is target:
        return target
    raise ValueError(f"Illegal round transition {current.value} -> {target.value}")


def estimate_time_to_block(blocks_away: int) -> TimeEstimate:
    minutes = max(0, blocks_away) * MINUTES_PER_BLOCK
    hours = minutes / 60

    if minutes < 60:
        formatted = f"~{minutes} min"
    elif hours < 24:
        formatted = f"~{hours:.1f} hours"
    else:
        formatted = f"~{hours / 24:.1f} days"
    return TimeEstimate(minutes=minutes, hours=hours, formatted=formatted)
