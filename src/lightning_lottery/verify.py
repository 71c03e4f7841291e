from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from .config import LotteryConfig
from .notes import commitment_from_event
from .project_constants import TOOL_NAME, TOOL_VERSION
from .receipts import ParsedReceipt
from .tickets import (
    DuplicatePaymentHashError,
    TicketCommitment,
    TicketEntry,
    assign_tickets,
    assignments_digest,
    create_commitment,
    get_total_tickets,
    verify_commitment,
)
from .winner import WinnerResult, calculate_prize_amount, verify_winner_selection


def build_audit(
    entries: Sequence[TicketEntry],
    result: WinnerResult,
    config: LotteryConfig,
    draw_block: int,
    block_source: str = "",
) -> Dict[str, Any]:
    commitment = create_commitment(entries, draw_block)
    total_sats = sum(e.amount_sats for e in entries)
    prize = calculate_prize_amount(total_sats, config.platform_fee_percent)

    return {
        "metadata": {
            "tool": TOOL_NAME,
            "version": TOOL_VERSION,
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "draw_block": draw_block,
            "block_hash": result.block_hash,
            "block_source": block_source,
            "block_hash_int": result.verification.block_hash_int,
            "total_tickets": result.verification.total_tickets,
            "winning_ticket": result.ticket_number,
            "winning_ticket_calc": result.verification.winning_ticket_calc,
            "ticket_hash": commitment.ticket_hash,
            "min_ticket_purchase": config.min_ticket_purchase,
            "platform_fee_percent": config.platform_fee_percent,
            "prize": {
                "gross_sats": prize.gross_prize,
                "platform_fee_sats": prize.platform_fee,
                "net_sats": prize.net_prize,
            },
        },
        "winner": {
            "buyer_key": result.winner.buyer_key,
            "payment_hash": result.winner.payment_hash,
            "amount_sats": result.winner.amount_sats,
            "ticket_start": result.winner.ticket_start,
            "ticket_end": result.winner.ticket_end,
        },
        # Store entries in deterministic order with ranges so anyone can re-run.
        "all_entries": [
            {
                "payment_hash": e.payment_hash,
                "buyer_key": e.buyer_key,
                "amount_sats": e.amount_sats,
                "ticket_start": e.ticket_start,
                "ticket_end": e.ticket_end,
                "timestamp": e.timestamp,
            }
            for e in entries
        ],
    }


def load_commitment(path: str) -> TicketCommitment:
    """
    Read a pre-draw commitment: the file written by `commit`, or a bare
    commitment event as fetched from a relay.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Commitment file {path} must hold a JSON object")

    if "kind" in data:
        return commitment_from_event(data)
    if isinstance(data.get("event"), dict):
        return commitment_from_event(data["event"])
    raw = data.get("commitment")
    if isinstance(raw, dict):
        try:
            commitment = TicketCommitment(
                draw_block=int(raw["draw_block"]),
                total_tickets=int(raw["total_tickets"]),
                ticket_hash=str(raw["ticket_hash"]),
                ticket_assignments=str(raw["ticket_assignments"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed commitment in {path}: {e}") from e
        if assignments_digest(commitment.ticket_assignments) != commitment.ticket_hash:
            raise ValueError(f"Commitment in {path}: ticket_hash does not match its assignments")
        return commitment
    raise ValueError(f"No commitment found in {path}")


def check_commitment(
    entries: Sequence[TicketEntry], commitment: TicketCommitment, draw_block: int
) -> None:
    """Raise unless `entries` are exactly what was committed for `draw_block`."""
    if commitment.draw_block != draw_block:
        raise RuntimeError(
            f"Commitment draw block mismatch: commitment={commitment.draw_block} "
            f"draw={draw_block}"
        )
    if not verify_commitment(entries, commitment):
        current = create_commitment(entries, draw_block)
        raise RuntimeError(
            f"Commitment mismatch: published ticket_hash={commitment.ticket_hash} "
            f"({commitment.total_tickets} tickets), recomputed={current.ticket_hash} "
            f"({current.total_tickets} tickets)"
        )


def verify_audit(
    audit_path: str, published: Optional[TicketCommitment] = None
) -> Dict[str, Any]:
    """
    Recompute an audit from its stored entries and raise RuntimeError on the
    first field that disagrees. With `published`, the entries must also match
    the commitment made before the draw.
    """
    with open(audit_path, "r", encoding="utf-8") as f:
        audit = json.load(f)

    meta = audit["metadata"]
    block_hash = meta["block_hash"]
    draw_block = int(meta["draw_block"])
    total_expected = int(meta["total_tickets"])
    ticket_expected = int(meta["winning_ticket"])
    stored = audit["all_entries"]

    # Recreate entries from the stored receipts, not from the stored ranges.
    receipts = [
        ParsedReceipt(
            payment_hash=e["payment_hash"],
            buyer_key=e["buyer_key"],
            amount_sats=int(e["amount_sats"]),
            timestamp=int(e.get("timestamp", 0)),
        )
        for e in stored
    ]
    try:
        entries = assign_tickets(receipts, min_ticket_purchase=1)
    except DuplicatePaymentHashError as e:
        raise RuntimeError(f"Duplicate payment hash in audit entries: {e}") from e

    by_hash = {e["payment_hash"]: e for e in stored}
    for recomputed in entries:
        e = by_hash[recomputed.payment_hash]
        if (recomputed.ticket_start, recomputed.ticket_end) != (
            int(e["ticket_start"]),
            int(e["ticket_end"]),
        ):
            raise RuntimeError(
                f"Ticket range mismatch for {e['payment_hash']}: "
                f"audit={e['ticket_start']}-{e['ticket_end']} "
                f"recomputed={recomputed.ticket_start}-{recomputed.ticket_end}"
            )

    total = get_total_tickets(entries)
    if total != total_expected:
        raise RuntimeError(
            f"Total tickets mismatch: audit={total_expected} recomputed={total}"
        )

    commitment = create_commitment(entries, draw_block)
    if commitment.ticket_hash != meta["ticket_hash"]:
        raise RuntimeError(
            f"Ticket hash mismatch: audit={meta['ticket_hash']} "
            f"recomputed={commitment.ticket_hash}"
        )

    if published is not None:
        check_commitment(entries, published, draw_block)

    fee_percent = int(meta["platform_fee_percent"])
    try:
        prize = calculate_prize_amount(sum(e.amount_sats for e in entries), fee_percent)
    except ValueError as e:
        raise RuntimeError(f"Prize mismatch: {e}") from e
    recomputed_prize = {
        "gross_sats": prize.gross_prize,
        "platform_fee_sats": prize.platform_fee,
        "net_sats": prize.net_prize,
    }
    if meta.get("prize") != recomputed_prize:
        raise RuntimeError(
            f"Prize mismatch: audit={meta.get('prize')} recomputed={recomputed_prize}"
        )

    check = verify_winner_selection(
        entries, block_hash, ticket_expected, audit["winner"]["buyer_key"]
    )
    if not check.is_valid:
        raise RuntimeError(f"Winner mismatch: {check.reason}")

    return {
        "ok": True,
        "block_hash": block_hash,
        "draw_block": draw_block,
        "ticket_hash": commitment.ticket_hash,
        "winner": check.calculated_winner,
        "winning_ticket": check.calculated_ticket,
        "total_tickets": total,
        "prize": recomputed_prize,
        "commitment_checked": published is not None,
    }
