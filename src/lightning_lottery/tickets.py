from __future__ import annotations

import hashlib
import json
import logging
from bisect import bisect_left
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .receipts import InvoiceDecoder, ParsedReceipt, parse_receipts

log = logging.getLogger(__name__)


class DuplicatePaymentHashError(ValueError):
    """Two receipts claim the same payment hash; ticket order would be arbitrary."""


@dataclass(frozen=True)
class TicketEntry:
    payment_hash: str
    buyer_key: str
    amount_sats: int
    ticket_start: int
    ticket_end: int  # inclusive
    timestamp: int

    @property
    def ticket_count(self) -> int:
        return self.ticket_end - self.ticket_start + 1


@dataclass(frozen=True)
class BuyerStats:
    buyer_key: str
    tickets: int
    percentage: float


@dataclass(frozen=True)
class TicketDistribution:
    total_tickets: int
    total_sats: int
    unique_buyers: int
    buyer_stats: List[BuyerStats]


@dataclass(frozen=True)
class TicketCommitment:
    draw_block: int
    total_tickets: int
    ticket_hash: str
    ticket_assignments: str


def assign_tickets(
    receipts: Iterable[ParsedReceipt], min_ticket_purchase: int = 1
) -> List[TicketEntry]:
    """
    Give every qualifying receipt a contiguous range of tickets, 1 sat each.

    Receipts are ordered by payment hash so that anyone holding the same
    receipts gets the same ranges, whatever order they were fetched in.
    """
    eligible = [r for r in receipts if r.amount_sats >= min_ticket_purchase]

    seen: Dict[str, ParsedReceipt] = {}
    for r in eligible:
        if r.payment_hash in seen:
            raise DuplicatePaymentHashError(
                f"Payment hash {r.payment_hash} appears on more than one receipt "
                f"({seen[r.payment_hash].event_id} and {r.event_id})"
            )
        seen[r.payment_hash] = r

    # Deterministic ordering (critical for reproducibility)
    eligible.sort(key=lambda r: r.payment_hash)

    entries: List[TicketEntry] = []
    cursor = 1
    for r in eligible:
        start = cursor
        end = start + r.amount_sats - 1
        entries.append(
            TicketEntry(r.payment_hash, r.buyer_key, r.amount_sats, start, end, r.timestamp)
        )
        cursor = end + 1
    return entries


def build_ticket_entries(
    events: Iterable[Mapping[str, Any]],
    min_ticket_purchase: int = 1,
    decode_invoice: Optional[InvoiceDecoder] = None,
    note_id: Optional[str] = None,
) -> List[TicketEntry]:
    parsed, rejected = parse_receipts(events, decode_invoice=decode_invoice, note_id=note_id)
    if rejected:
        log.debug("%d receipts excluded while parsing", len(rejected))
    return assign_tickets(parsed, min_ticket_purchase)


def get_total_tickets(entries: Sequence[TicketEntry]) -> int:
    if not entries:
        return 0
    return entries[-1].ticket_end


def find_ticket_owner(
    entries: Sequence[TicketEntry], ticket_number: int
) -> Optional[TicketEntry]:
    if ticket_number < 1 or ticket_number > get_total_tickets(entries):
        return None
    idx = bisect_left(entries, ticket_number, key=lambda e: e.ticket_end)
    entry = entries[idx]
    if entry.ticket_start <= ticket_number <= entry.ticket_end:
        return entry
    return None


def ticket_distribution(entries: Sequence[TicketEntry]) -> TicketDistribution:
    total_tickets = get_total_tickets(entries)
    total_sats = sum(e.amount_sats for e in entries)

    per_buyer: Dict[str, int] = {}
    for e in entries:
        per_buyer[e.buyer_key] = per_buyer.get(e.buyer_key, 0) + e.amount_sats

    stats = [
        BuyerStats(
            buyer_key=key,
            tickets=tickets,
            percentage=(tickets / total_tickets) * 100 if total_tickets > 0 else 0.0,
        )
        for key, tickets in per_buyer.items()
    ]
    stats.sort(key=lambda s: s.tickets, reverse=True)

    return TicketDistribution(
        total_tickets=total_tickets,
        total_sats=total_sats,
        unique_buyers=len(per_buyer),
        buyer_stats=stats,
    )


def _serialize_assignments(entries: Sequence[TicketEntry]) -> str:
    assignments = [
        {
            "paymentHash": e.payment_hash,
            "pubkey": e.buyer_key,
            "sats": e.amount_sats,
            "start": e.ticket_start,
            "end": e.ticket_end,
        }
        for e in entries
    ]
    return json.dumps(assignments, separators=(",", ":"), ensure_ascii=False)


def assignments_digest(ticket_assignments: str) -> str:
    return hashlib.sha256(ticket_assignments.encode("utf-8")).hexdigest()


def create_commitment(entries: Sequence[TicketEntry], draw_block: int) -> TicketCommitment:
    """Bind the operator to the ticket assignments before the draw block exists."""
    ticket_assignments = _serialize_assignments(entries)
    return TicketCommitment(
        draw_block=draw_block,
        total_tickets=get_total_tickets(entries),
        ticket_hash=assignments_digest(ticket_assignments),
        ticket_assignments=ticket_assignments,
    )


def verify_commitment(entries: Sequence[TicketEntry], commitment: TicketCommitment) -> bool:
    current = create_commitment(entries, commitment.draw_block)
    return (
        current.ticket_hash == commitment.ticket_hash
        and current.total_tickets == commitment.total_tickets
    )


def commitment_assignments(commitment: TicketCommitment) -> List[Tuple[str, str, int, int, int]]:
    """
    Decode a published assignment list into
    (payment_hash, buyer_key, sats, start, end) tuples.
    """
    try:
        items = json.loads(commitment.ticket_assignments)
        return [
            (
                str(a["paymentHash"]),
                str(a["pubkey"]),
                int(a["sats"]),
                int(a["start"]),
                int(a["end"]),
            )
            for a in items
        ]
    except (ValueError, TypeError, KeyError) as e:
        raise ValueError(f"Malformed ticket assignments in commitment: {e}") from e
