"""Tests for audit generation and independent audit verification."""

import dataclasses
import json
from pathlib import Path
from typing import Any, Dict, List

import pytest

from lightning_lottery.config import LotteryConfig
from lightning_lottery.receipts import ParsedReceipt
from lightning_lottery.notes import commitment_template
from lightning_lottery.tickets import TicketEntry, assign_tickets, create_commitment
from lightning_lottery.verify import build_audit, load_commitment, verify_audit
from lightning_lottery.winner import select_winner

BLOCK_HASH = "00000000000000000002a7c4c1e48d76c5a37902165a270156b7a8d72728a054"


@pytest.fixture
def entries() -> List[TicketEntry]:
    return assign_tickets(
        [
            ParsedReceipt(f"{n:064x}", f"buyer-{n % 3}", 10 * n, 1_700_000_000 + n)
            for n in range(1, 12)
        ]
    )


@pytest.fixture
def audit(entries: List[TicketEntry]) -> Dict[str, Any]:
    result = select_winner(entries, BLOCK_HASH)
    assert result is not None
    return build_audit(entries, result, LotteryConfig(platform_fee_percent=3), 850_100)


def write(tmp_path: Path, audit: Dict[str, Any]) -> str:
    path = tmp_path / "audit.json"
    path.write_text(json.dumps(audit))
    return str(path)


class TestBuildAudit:
    def test_metadata(self, audit: Dict[str, Any]) -> None:
        meta = audit["metadata"]
        assert meta["draw_block"] == 850_100
        assert meta["total_tickets"] == 660
        assert meta["block_hash_int"] == str(int(BLOCK_HASH, 16))
        assert meta["winning_ticket"] == int(BLOCK_HASH, 16) % 660 + 1
        assert meta["prize"] == {"gross_sats": 660, "platform_fee_sats": 19, "net_sats": 641}
        assert len(audit["all_entries"]) == 11


class TestVerifyAudit:
    def test_valid(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        result = verify_audit(write(tmp_path, audit))
        assert result["ok"] is True
        assert result["winning_ticket"] == audit["metadata"]["winning_ticket"]
        assert result["winner"] == audit["winner"]["buyer_key"]
        assert result["ticket_hash"] == audit["metadata"]["ticket_hash"]

    def test_entry_order_in_file_does_not_matter(
        self, tmp_path: Path, audit: Dict[str, Any]
    ) -> None:
        audit["all_entries"].reverse()
        assert verify_audit(write(tmp_path, audit))["ok"] is True

    def test_tampered_range(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        audit["all_entries"][0]["ticket_end"] += 1
        with pytest.raises(RuntimeError, match="Ticket range mismatch"):
            verify_audit(write(tmp_path, audit))

    def test_tampered_amount(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        audit["all_entries"][-1]["amount_sats"] += 5
        audit["all_entries"][-1]["ticket_end"] += 5
        with pytest.raises(RuntimeError, match="Total tickets mismatch"):
            verify_audit(write(tmp_path, audit))

    def test_tampered_buyer(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        audit["all_entries"][0]["buyer_key"] = "mallory"
        with pytest.raises(RuntimeError, match="Ticket hash mismatch"):
            verify_audit(write(tmp_path, audit))

    def test_tampered_winning_ticket(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        audit["metadata"]["winning_ticket"] = audit["metadata"]["winning_ticket"] % 660 + 1
        with pytest.raises(RuntimeError, match="Winner mismatch"):
            verify_audit(write(tmp_path, audit))

    def test_tampered_winner(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        audit["winner"]["buyer_key"] = "mallory"
        with pytest.raises(RuntimeError, match="Winner mismatch"):
            verify_audit(write(tmp_path, audit))

    def test_tampered_prize(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        audit["metadata"]["prize"]["platform_fee_sats"] = 7
        audit["metadata"]["prize"]["net_sats"] = 1
        with pytest.raises(RuntimeError, match="Prize mismatch"):
            verify_audit(write(tmp_path, audit))

    def test_tampered_fee_percent(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        audit["metadata"]["platform_fee_percent"] = 0
        with pytest.raises(RuntimeError, match="Prize mismatch"):
            verify_audit(write(tmp_path, audit))

    def test_prize_reported(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        result = verify_audit(write(tmp_path, audit))
        assert result["prize"] == audit["metadata"]["prize"]
        assert result["commitment_checked"] is False

    def test_duplicate_payment_hash(self, tmp_path: Path, audit: Dict[str, Any]) -> None:
        audit["all_entries"].append(dict(audit["all_entries"][0]))
        with pytest.raises(RuntimeError, match="Duplicate payment hash"):
            verify_audit(write(tmp_path, audit))


class TestVerifyAgainstCommitment:
    def test_matching_commitment(
        self, tmp_path: Path, entries: List[TicketEntry], audit: Dict[str, Any]
    ) -> None:
        published = create_commitment(entries, 850_100)
        result = verify_audit(write(tmp_path, audit), published=published)
        assert result["commitment_checked"] is True

    def test_entries_changed_after_commit(
        self, tmp_path: Path, entries: List[TicketEntry], audit: Dict[str, Any]
    ) -> None:
        published = create_commitment(entries[1:], 850_100)
        with pytest.raises(RuntimeError, match="Commitment mismatch"):
            verify_audit(write(tmp_path, audit), published=published)

    def test_commitment_for_other_round(
        self, tmp_path: Path, entries: List[TicketEntry], audit: Dict[str, Any]
    ) -> None:
        published = create_commitment(entries, 850_000)
        with pytest.raises(RuntimeError, match="draw block mismatch"):
            verify_audit(write(tmp_path, audit), published=published)


class TestLoadCommitment:
    def test_commit_output(self, tmp_path: Path, entries: List[TicketEntry]) -> None:
        commitment = create_commitment(entries, 850_100)
        path = tmp_path / "commitment.json"
        path.write_text(
            json.dumps(
                {
                    "commitment": dataclasses.asdict(commitment),
                    "event": commitment_template(commitment),
                }
            )
        )
        assert load_commitment(str(path)) == commitment

    def test_bare_event(self, tmp_path: Path, entries: List[TicketEntry]) -> None:
        commitment = create_commitment(entries, 850_100)
        path = tmp_path / "event.json"
        path.write_text(json.dumps(commitment_template(commitment)))
        assert load_commitment(str(path)) == commitment

    def test_commitment_only(self, tmp_path: Path, entries: List[TicketEntry]) -> None:
        commitment = create_commitment(entries, 850_100)
        path = tmp_path / "commitment.json"
        path.write_text(json.dumps({"commitment": dataclasses.asdict(commitment)}))
        assert load_commitment(str(path)) == commitment

    def test_inconsistent_hash(self, tmp_path: Path, entries: List[TicketEntry]) -> None:
        commitment = dataclasses.replace(create_commitment(entries, 850_100), ticket_hash="0" * 64)
        path = tmp_path / "commitment.json"
        path.write_text(json.dumps({"commitment": dataclasses.asdict(commitment)}))
        with pytest.raises(ValueError, match="does not match"):
            load_commitment(str(path))

    def test_nothing_to_load(self, tmp_path: Path) -> None:
        path = tmp_path / "commitment.json"
        path.write_text(json.dumps({"hello": "world"}))
        with pytest.raises(ValueError, match="No commitment"):
            load_commitment(str(path))
