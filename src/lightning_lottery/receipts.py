from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import bolt11

from .project_constants import ZAP_RECEIPT_KIND

log = logging.getLogger(__name__)

PAYMENT_HASH_RE = re.compile(r"[0-9a-f]{64}")

# Anything with `payment_hash` and `amount_msat`, e.g. bolt11.decode().
InvoiceDecoder = Callable[[str], Any]


class RejectReason(str, enum.Enum):
    NOT_ZAP_RECEIPT = "not_zap_receipt"
    MISSING_BOLT11 = "missing_bolt11"
    INVALID_BOLT11 = "invalid_bolt11"
    INVALID_PAYMENT_HASH = "invalid_payment_hash"
    MISSING_AMOUNT = "missing_amount"
    MISSING_SENDER = "missing_sender"
    INVALID_TIMESTAMP = "invalid_timestamp"
    WRONG_TARGET = "wrong_target"


@dataclass(frozen=True)
class ParsedReceipt:
    payment_hash: str
    buyer_key: str
    amount_sats: int
    timestamp: int
    target_id: Optional[str] = None
    bolt11: str = ""
    event_id: Optional[str] = None


@dataclass(frozen=True)
class RejectedReceipt:
    reason: RejectReason
    detail: str = ""
    event_id: Optional[str] = None


ReceiptResult = Union[ParsedReceipt, RejectedReceipt]


def _first_tag(event: Mapping[str, Any], name: str) -> Optional[str]:
    tags = event.get("tags")
    if not isinstance(tags, list):
        return None
    for tag in tags:
        if not isinstance(tag, (list, tuple)) or len(tag) < 2:
            continue
        if tag[0] == name and isinstance(tag[1], str):
            return tag[1]
    return None


def _sender_from_description(description: Optional[str]) -> Optional[str]:
    """The zap request embedded in `description` is signed by the sender."""
    if not description:
        return None
    try:
        zap_request = json.loads(description)
    except ValueError:
        return None
    if isinstance(zap_request, dict) and isinstance(zap_request.get("pubkey"), str):
        return zap_request["pubkey"]
    return None


def parse_zap_receipt(
    event: Mapping[str, Any],
    decode_invoice: Optional[InvoiceDecoder] = None,
    note_id: Optional[str] = None,
) -> ReceiptResult:
    """
    Extract payer, payment hash and amount from a zap receipt (kind 9735).

    A receipt that cannot buy a ticket comes back as a RejectedReceipt
    carrying the reason; nothing is raised for malformed events.
    """
    if not isinstance(event, Mapping):
        return RejectedReceipt(RejectReason.NOT_ZAP_RECEIPT, f"not an event: {event!r}")
    event_id = event.get("id") if isinstance(event.get("id"), str) else None

    def reject(reason: RejectReason, detail: str = "") -> RejectedReceipt:
        return RejectedReceipt(reason=reason, detail=detail, event_id=event_id)

    if event.get("kind") != ZAP_RECEIPT_KIND:
        return reject(RejectReason.NOT_ZAP_RECEIPT, f"kind={event.get('kind')!r}")

    invoice = _first_tag(event, "bolt11")
    if not invoice:
        return reject(RejectReason.MISSING_BOLT11)

    decode = decode_invoice or bolt11.decode
    try:
        decoded = decode(invoice)
    except Exception as e:
        return reject(RejectReason.INVALID_BOLT11, str(e))

    payment_hash = getattr(decoded, "payment_hash", None)
    if not isinstance(payment_hash, str) or not PAYMENT_HASH_RE.fullmatch(payment_hash.lower()):
        return reject(RejectReason.INVALID_PAYMENT_HASH, repr(payment_hash))
    payment_hash = payment_hash.lower()

    amount_msat = getattr(decoded, "amount_msat", None)
    if amount_msat is None:
        return reject(RejectReason.MISSING_AMOUNT, "invoice carries no amount")
    # Invoice amounts are millisatoshis; partial sats buy nothing.
    amount_sats = int(amount_msat) // 1000
    if amount_sats <= 0:
        return reject(RejectReason.MISSING_AMOUNT, f"amount_msat={amount_msat}")

    sender = _first_tag(event, "P") or _sender_from_description(
        _first_tag(event, "description")
    )
    if not sender:
        return reject(RejectReason.MISSING_SENDER)

    created_at = event.get("created_at")
    if not isinstance(created_at, int) or isinstance(created_at, bool):
        return reject(RejectReason.INVALID_TIMESTAMP, repr(created_at))

    target_id = _first_tag(event, "e")
    if note_id is not None and target_id != note_id:
        return reject(RejectReason.WRONG_TARGET, f"e={target_id!r}")

    return ParsedReceipt(
        payment_hash=payment_hash,
        buyer_key=sender,
        amount_sats=amount_sats,
        timestamp=created_at,
        target_id=target_id,
        bolt11=invoice,
        event_id=event_id,
    )


def parse_receipts(
    events: Iterable[Mapping[str, Any]],
    decode_invoice: Optional[InvoiceDecoder] = None,
    note_id: Optional[str] = None,
) -> Tuple[List[ParsedReceipt], List[RejectedReceipt]]:
    parsed: List[ParsedReceipt] = []
    rejected: List[RejectedReceipt] = []
    for event in events:
        result = parse_zap_receipt(event, decode_invoice=decode_invoice, note_id=note_id)
        if isinstance(result, RejectedReceipt):
            log.debug(
                "Skipping receipt %s: %s %s",
                result.event_id,
                result.reason.value,
                result.detail,
            )
            rejected.append(result)
        else:
            parsed.append(result)
    return parsed, rejected


def load_receipts_from_file(path: str) -> List[Dict[str, Any]]:
    """
    Supports:
    1) JSON array of events
    2) JSON object {"events": [...]}
    3) JSON lines, one event per line

    The same event seen on several relays is kept once.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read().strip()

    if not raw:
        return []

    try:
        data = json.loads(raw)
    except ValueError:
        try:
            data = [json.loads(line) for line in raw.splitlines() if line.strip()]
        except ValueError as e:
            raise RuntimeError(f"Receipts file is neither JSON nor JSON lines: {e}")

    if isinstance(data, dict):
        data = data["events"] if "events" in data else [data]
    if not isinstance(data, list):
        raise RuntimeError(
            "Could not find events in receipts file. "
            'Expected a JSON array, {"events": [...]} or JSON lines.'
        )

    events: List[Dict[str, Any]] = []
    seen_ids = set()
    for item in data:
        if not isinstance(item, dict):
            continue
        event_id = item.get("id")
        if event_id is not None:
            if event_id in seen_ids:
                log.debug("Dropping duplicate event %s", event_id)
                continue
            seen_ids.add(event_id)
        events.append(item)
    return events


class FileReceiptSource:
    """Receipts exported from relays into a local file."""

    def __init__(self, path: str) -> None:
        self.path = path

    def fetch_receipts(self, note_id: Optional[str] = None) -> List[Dict[str, Any]]:
        events = load_receipts_from_file(self.path)
        if note_id is None:
            return events
        return [e for e in events if _first_tag(e, "e") == note_id]
