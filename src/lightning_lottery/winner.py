from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from .tickets import TicketEntry, find_ticket_owner, get_total_tickets

BLOCK_HASH_RE = re.compile(r"[0-9a-fA-F]{64}")


class TicketInvariantError(RuntimeError):
    """A ticket inside [1, total] has no owner: allocation and selection disagree."""


@dataclass(frozen=True)
class WinnerVerification:
    block_hash_hex: str
    block_hash_int: str  # big int; decimal string for safety
    total_tickets: int
    winning_ticket_calc: str


@dataclass(frozen=True)
class WinnerResult:
    ticket_number: int
    winner: TicketEntry
    block_hash: str
    verification: WinnerVerification


@dataclass(frozen=True)
class SelectionCheck:
    is_valid: bool
    reason: Optional[str] = None
    mismatch: Optional[str] = None  # "ticket" | "winner" | "no_winner"
    calculated_ticket: Optional[int] = None
    calculated_winner: Optional[str] = None


@dataclass(frozen=True)
class PrizeBreakdown:
    gross_prize: int
    platform_fee: int
    net_prize: int


def block_hash_to_int(block_hash: str) -> int:
    if not isinstance(block_hash, str) or not BLOCK_HASH_RE.fullmatch(block_hash):
        raise ValueError(f"Block hash must be 64 hex characters, got {block_hash!r}")
    return int(block_hash, 16)


def select_winner(entries: Sequence[TicketEntry], block_hash: str) -> Optional[WinnerResult]:
    """
    Pick the winning ticket from the draw block hash.

    The hash is read as a big-endian 256-bit integer and reduced modulo the
    number of tickets; tickets are 1-indexed, hence the +1. Returns None when
    nobody bought a ticket.
    """
    total_tickets = get_total_tickets(entries)
    if not entries or total_tickets == 0:
        return None

    hash_int = block_hash_to_int(block_hash)
    block_hash = block_hash.lower()
    ticket = hash_int % total_tickets + 1

    winner = find_ticket_owner(entries, ticket)
    if winner is None:
        raise TicketInvariantError(
            f"Ticket {ticket} of {total_tickets} has no owner (unexpected)."
        )

    return WinnerResult(
        ticket_number=ticket,
        winner=winner,
        block_hash=block_hash,
        verification=WinnerVerification(
            block_hash_hex=block_hash,
            block_hash_int=str(hash_int),
            total_tickets=total_tickets,
            winning_ticket_calc=f"({hash_int} % {total_tickets}) + 1 = {ticket}",
        ),
    )


def verify_winner_selection(
    entries: Sequence[TicketEntry],
    block_hash: str,
    claimed_ticket: int,
    claimed_buyer_key: str,
) -> SelectionCheck:
    result = select_winner(entries, block_hash)
    if result is None:
        return SelectionCheck(
            is_valid=False,
            reason="Could not calculate winner from provided data",
            mismatch="no_winner",
        )

    calculated_ticket = result.ticket_number
    calculated_winner = result.winner.buyer_key

    if calculated_ticket != claimed_ticket:
        return SelectionCheck(
            is_valid=False,
            reason=(
                f"Claimed ticket {claimed_ticket} does not match "
                f"calculated ticket {calculated_ticket}"
            ),
            mismatch="ticket",
            calculated_ticket=calculated_ticket,
            calculated_winner=calculated_winner,
        )

    if calculated_winner != claimed_buyer_key:
        return SelectionCheck(
            is_valid=False,
            reason=(
                f"Claimed winner {claimed_buyer_key} does not match "
                f"calculated winner {calculated_winner}"
            ),
            mismatch="winner",
            calculated_ticket=calculated_ticket,
            calculated_winner=calculated_winner,
        )

    return SelectionCheck(
        is_valid=True,
        calculated_ticket=calculated_ticket,
        calculated_winner=calculated_winner,
    )


def calculate_prize_amount(total_sats: int, platform_fee_percent: int) -> PrizeBreakdown:
    if total_sats < 0:
        raise ValueError("total_sats must be non-negative")
    if not 0 <= platform_fee_percent <= 100:
        raise ValueError("platform_fee_percent must be between 0 and 100")
    # Floor, never round: part of the public verification contract.
    fee = int((total_sats * platform_fee_percent) // 100)
    return PrizeBreakdown(
        gross_prize=total_sats,
        platform_fee=fee,
        net_prize=total_sats - fee,
    )


def format_winner_result(result: WinnerResult) -> str:
    return "\n".join(
        [
            f"Winning Ticket: #{result.ticket_number}",
            f"Winner: {result.winner.buyer_key[:8]}...",
            f"Prize: {result.winner.amount_sats} sats worth of tickets",
            "",
            "Verification:",
            f"Block Hash: {result.block_hash}",
            f"Calculation: {result.verification.winning_ticket_calc}",
        ]
    )
