"""
Unsigned Nostr event templates for the three public messages of a round:
the announcement people zap, the pre-draw ticket commitment, and the result.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .project_constants import LOTTERY_COMMITMENT_KIND, LOTTERY_TAG, TEXT_NOTE_KIND
from .schedule import RoundInfo
from .tickets import TicketCommitment, assignments_digest, commitment_assignments
from .winner import WinnerResult


def announcement_template(round_info: RoundInfo) -> Dict[str, Any]:
    content = "\n".join(
        [
            f"Lightning Lottery Round #{round_info.draw_block}",
            "",
            "Zap this note to buy tickets!",
            "1 sat = 1 ticket",
            "",
            f"Draw Block: {round_info.draw_block}",
            f"Sales Close: Block {round_info.sales_close_block}",
            f"Payout: Block {round_info.payout_block}",
            "",
            f"Blocks until sales close: {round_info.blocks_until_sales_close}",
            "",
            "Winner determined by Bitcoin block hash - provably fair!",
            "",
            f"#{LOTTERY_TAG} #bitcoin #lightning",
        ]
    )
    return {
        "kind": TEXT_NOTE_KIND,
        "content": content,
        "tags": [
            ["t", LOTTERY_TAG],
            ["t", "bitcoin"],
            ["t", "lightning"],
            ["draw_block", str(round_info.draw_block)],
            ["sales_close_block", str(round_info.sales_close_block)],
        ],
    }


def commitment_template(commitment: TicketCommitment) -> Dict[str, Any]:
    block = commitment.draw_block
    content = "\n".join(
        [
            f"Ticket Commitment for Lottery #{block}",
            "",
            f"Total Tickets: {commitment.total_tickets}",
            f"Commitment Hash: {commitment.ticket_hash}",
            "",
            f"This commitment was published before block {block} was mined.",
            "Anyone can verify the winner by checking the ticket assignments below.",
        ]
    )
    return {
        "kind": LOTTERY_COMMITMENT_KIND,
        "content": content,
        "tags": [
            ["d", f"lottery-commitment-{block}"],
            ["t", LOTTERY_TAG],
            ["draw_block", str(block)],
            ["total_tickets", str(commitment.total_tickets)],
            ["ticket_hash", commitment.ticket_hash],
            ["ticket_assignments", commitment.ticket_assignments],
            ["alt", f"Lottery ticket commitment for block {block}"],
        ],
    }


def result_template(
    result: WinnerResult,
    draw_block: int,
    prize_sats: int,
    preimage: Optional[str] = None,
) -> Dict[str, Any]:
    buyer = result.winner.buyer_key
    content = "\n".join(
        [
            f"Lottery #{draw_block} Winner Announced!",
            "",
            f"Winning Ticket: #{result.ticket_number}",
            f"Winner: nostr:{buyer}",
            f"Prize: {prize_sats} sats",
            "",
            "Verification:",
            f"Block Hash: {result.block_hash}",
            f"Calculation: {result.verification.winning_ticket_calc}",
            "",
            f"Payment Preimage: {preimage}" if preimage else "Payout pending...",
            "",
            f"#{LOTTERY_TAG} #bitcoin #lightning",
        ]
    )
    tags: List[List[str]] = [
        ["t", LOTTERY_TAG],
        ["p", buyer],
        ["draw_block", str(draw_block)],
        ["block_hash", result.block_hash],
        ["winning_ticket", str(result.ticket_number)],
        ["total_tickets", str(result.verification.total_tickets)],
        ["prize_sats", str(prize_sats)],
    ]
    if preimage:
        tags.append(["preimage", preimage])
    return {"kind": TEXT_NOTE_KIND, "content": content, "tags": tags}


def commitment_from_event(event: Mapping[str, Any]) -> TicketCommitment:
    """Read back a published commitment, checking its hash against its own assignments."""
    if event.get("kind") != LOTTERY_COMMITMENT_KIND:
        raise ValueError(f"Not a commitment event: kind={event.get('kind')!r}")

    tags: Dict[str, str] = {}
    raw_tags = event.get("tags")
    for tag in raw_tags if isinstance(raw_tags, list) else []:
        if isinstance(tag, (list, tuple)) and len(tag) >= 2 and tag[0] not in tags:
            tags[tag[0]] = tag[1]

    missing = [
        k for k in ("draw_block", "total_tickets", "ticket_hash", "ticket_assignments")
        if k not in tags
    ]
    if missing:
        raise ValueError(f"Commitment event missing tags: {', '.join(missing)}")

    commitment = TicketCommitment(
        draw_block=int(tags["draw_block"]),
        total_tickets=int(tags["total_tickets"]),
        ticket_hash=tags["ticket_hash"],
        ticket_assignments=tags["ticket_assignments"],
    )

    if assignments_digest(commitment.ticket_assignments) != commitment.ticket_hash:
        raise ValueError("Commitment hash does not match its ticket assignments")

    assignments = commitment_assignments(commitment)
    last_end = assignments[-1][4] if assignments else 0
    if last_end != commitment.total_tickets:
        raise ValueError(
            f"Commitment claims {commitment.total_tickets} tickets, "
            f"assignments end at {last_end}"
        )
    return commitment
