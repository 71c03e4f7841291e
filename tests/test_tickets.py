"""Tests for ticket allocation, lookup, distribution and commitments."""

import dataclasses
import json
import random
from collections.abc import Sequence
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from lightning_lottery.receipts import ParsedReceipt
from lightning_lottery.tickets import (
    DuplicatePaymentHashError,
    TicketEntry,
    assign_tickets,
    build_ticket_entries,
    commitment_assignments,
    create_commitment,
    find_ticket_owner,
    get_total_tickets,
    ticket_distribution,
    verify_commitment,
)

HASH_X = "aa" * 32
HASH_Y = "01" + "00" * 31


def receipt(payment_hash: str, buyer: str, sats: int, ts: int = 1_700_000_000) -> ParsedReceipt:
    return ParsedReceipt(payment_hash=payment_hash, buyer_key=buyer, amount_sats=sats, timestamp=ts)


def _hash(n: int) -> str:
    return f"{n:064x}"


class CountingEntries(Sequence):
    """Counts item reads so lookups can be checked for logarithmic cost."""

    def __init__(self, items: List[TicketEntry]) -> None:
        self.items = items
        self.reads = 0

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: Any) -> Any:
        self.reads += 1
        return self.items[index]


@pytest.fixture
def example() -> List[TicketEntry]:
    return assign_tickets([receipt(HASH_X, "X", 3), receipt(HASH_Y, "Y", 5)])


class TestAssignTickets:
    def test_example_ordering(self, example: List[TicketEntry]) -> None:
        assert [(e.buyer_key, e.ticket_start, e.ticket_end) for e in example] == [
            ("Y", 1, 5),
            ("X", 6, 8),
        ]
        assert get_total_tickets(example) == 8

    def test_empty(self) -> None:
        assert assign_tickets([]) == []
        assert get_total_tickets([]) == 0

    def test_ranges_contiguous_and_sum_to_sats(self) -> None:
        rng = random.Random(7)
        receipts = [receipt(_hash(rng.getrandbits(256)), f"b{i % 5}", rng.randint(1, 5000)) for i in range(200)]
        entries = assign_tickets(receipts)

        assert entries[0].ticket_start == 1
        for prev, cur in zip(entries, entries[1:]):
            assert cur.ticket_start == prev.ticket_end + 1
            assert prev.payment_hash < cur.payment_hash
        for e in entries:
            assert e.ticket_end - e.ticket_start + 1 == e.amount_sats == e.ticket_count
        assert get_total_tickets(entries) == sum(r.amount_sats for r in receipts)

    def test_input_order_does_not_matter(self) -> None:
        receipts = [receipt(_hash(n * 7919), f"b{n}", n + 1) for n in range(50)]
        shuffled = list(receipts)
        random.Random(3).shuffle(shuffled)
        assert assign_tickets(receipts) == assign_tickets(shuffled)
        assert (
            create_commitment(assign_tickets(receipts), 100).ticket_assignments
            == create_commitment(assign_tickets(shuffled), 100).ticket_assignments
        )

    def test_minimum_purchase_filters(self) -> None:
        entries = assign_tickets(
            [receipt(_hash(1), "small", 9), receipt(_hash(2), "big", 10)],
            min_ticket_purchase=10,
        )
        assert [e.buyer_key for e in entries] == ["big"]
        assert entries[0].ticket_start == 1

    def test_duplicate_payment_hash_rejected(self) -> None:
        with pytest.raises(DuplicatePaymentHashError, match=HASH_X):
            assign_tickets([receipt(HASH_X, "X", 3), receipt(HASH_X, "Z", 4)])

    def test_duplicate_below_minimum_is_ignored(self) -> None:
        entries = assign_tickets(
            [receipt(HASH_X, "X", 3), receipt(HASH_X, "Z", 50)], min_ticket_purchase=10
        )
        assert [e.buyer_key for e in entries] == ["Z"]

    def test_entries_immutable(self, example: List[TicketEntry]) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            example[0].ticket_end = 99  # type: ignore[misc]


class TestBuildTicketEntries:
    def test_parses_and_skips_malformed(self) -> None:
        def decode(invoice: str) -> SimpleNamespace:
            payment_hash, msat = invoice.split(":")
            return SimpleNamespace(payment_hash=payment_hash, amount_msat=int(msat))

        def event(payment_hash: str, buyer: str, sats: int) -> Dict[str, Any]:
            return {
                "id": payment_hash[:8],
                "kind": 9735,
                "created_at": 1,
                "tags": [["bolt11", f"{payment_hash}:{sats * 1000}"], ["P", buyer]],
            }

        events = [
            event(HASH_X, "X", 3),
            event(HASH_Y, "Y", 5),
            {"id": "junk", "kind": 9735, "created_at": 1, "tags": []},
            {"id": "none-tag", "kind": 9735, "created_at": 1, "tags": [None, ["P", "Z"]]},
        ]
        entries = build_ticket_entries(events, decode_invoice=decode)
        assert [(e.buyer_key, e.ticket_start, e.ticket_end) for e in entries] == [
            ("Y", 1, 5),
            ("X", 6, 8),
        ]


class TestFindTicketOwner:
    def test_total_over_range(self, example: List[TicketEntry]) -> None:
        owners = [find_ticket_owner(example, n) for n in range(1, 9)]
        assert [o.buyer_key for o in owners if o] == ["Y"] * 5 + ["X"] * 3

    @pytest.mark.parametrize("ticket", [0, -1, 9, 1000])
    def test_outside_range(self, example: List[TicketEntry], ticket: int) -> None:
        assert find_ticket_owner(example, ticket) is None

    def test_empty(self) -> None:
        assert find_ticket_owner([], 1) is None

    def test_many_entries(self) -> None:
        entries = assign_tickets([receipt(_hash(n), f"b{n}", (n % 7) + 1) for n in range(1, 500)])
        for e in entries:
            assert find_ticket_owner(entries, e.ticket_start) is e
            assert find_ticket_owner(entries, e.ticket_end) is e

    def test_lookup_reads_few_entries(self) -> None:
        entries = CountingEntries(
            assign_tickets([receipt(_hash(n), f"b{n}", 3) for n in range(1, 1025)])
        )
        owner = find_ticket_owner(entries, 1500)
        assert owner is not None and owner.ticket_start <= 1500 <= owner.ticket_end
        assert entries.reads <= 16


class TestDistribution:
    def test_aggregates_per_buyer(self) -> None:
        entries = assign_tickets(
            [
                receipt(_hash(1), "alice", 10),
                receipt(_hash(2), "bob", 30),
                receipt(_hash(3), "alice", 20),
            ]
        )
        dist = ticket_distribution(entries)
        assert dist.total_tickets == 60
        assert dist.total_sats == 60
        assert dist.unique_buyers == 2
        assert [(s.buyer_key, s.tickets) for s in dist.buyer_stats] == [("alice", 30), ("bob", 30)]
        assert dist.buyer_stats[0].percentage == pytest.approx(50.0)

    def test_sorted_descending(self, example: List[TicketEntry]) -> None:
        dist = ticket_distribution(example)
        assert [s.buyer_key for s in dist.buyer_stats] == ["Y", "X"]
        assert dist.buyer_stats[1].percentage == pytest.approx(37.5)

    def test_empty(self) -> None:
        dist = ticket_distribution([])
        assert dist.total_tickets == 0
        assert dist.unique_buyers == 0
        assert dist.buyer_stats == []


class TestCommitment:
    def test_round_trip(self, example: List[TicketEntry]) -> None:
        commitment = create_commitment(example, 850_100)
        assert commitment.draw_block == 850_100
        assert commitment.total_tickets == 8
        assert len(commitment.ticket_hash) == 64
        assert verify_commitment(example, commitment)

    def test_canonical_serialization(self, example: List[TicketEntry]) -> None:
        commitment = create_commitment(example, 1)
        assert commitment.ticket_assignments.startswith(
            '[{"paymentHash":"' + HASH_Y + '","pubkey":"Y","sats":5,"start":1,"end":5}'
        )
        assert json.loads(commitment.ticket_assignments)[1]["pubkey"] == "X"

    def test_deterministic(self, example: List[TicketEntry]) -> None:
        assert create_commitment(example, 7) == create_commitment(list(example), 7)

    def test_amount_change_detected(self, example: List[TicketEntry]) -> None:
        commitment = create_commitment(example, 850_100)
        tampered = assign_tickets([receipt(HASH_X, "X", 4), receipt(HASH_Y, "Y", 5)])
        assert not verify_commitment(tampered, commitment)

    def test_buyer_change_detected(self, example: List[TicketEntry]) -> None:
        commitment = create_commitment(example, 850_100)
        tampered = [dataclasses.replace(example[0], buyer_key="Mallory"), example[1]]
        assert not verify_commitment(tampered, commitment)

    def test_total_change_detected(self, example: List[TicketEntry]) -> None:
        commitment = dataclasses.replace(create_commitment(example, 1), total_tickets=9)
        assert not verify_commitment(example, commitment)

    def test_empty_commitment(self) -> None:
        commitment = create_commitment([], 100)
        assert commitment.total_tickets == 0
        assert commitment.ticket_assignments == "[]"
        assert verify_commitment([], commitment)

    def test_assignments_decode(self, example: List[TicketEntry]) -> None:
        decoded = commitment_assignments(create_commitment(example, 1))
        assert decoded == [(HASH_Y, "Y", 5, 1, 5), (HASH_X, "X", 3, 6, 8)]

    def test_assignments_malformed(self, example: List[TicketEntry]) -> None:
        bad = dataclasses.replace(create_commitment(example, 1), ticket_assignments='[{"x":1}]')
        with pytest.raises(ValueError, match="Malformed"):
            commitment_assignments(bad)
