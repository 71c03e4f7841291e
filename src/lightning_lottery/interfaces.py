"""
Collaborators the lottery engine relies on but never calls itself.

The engine functions are pure; whoever drives a round (the CLI, a bot, a
web app) wires these in and feeds their outputs to the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol


@dataclass(frozen=True)
class PaymentProof:
    preimage: str
    invoice: str


class BlockDataProvider(Protocol):
    def get_tip_height(self) -> int:
        ...

    def get_block_hash(self, height: int) -> Optional[str]:
        """None means not mined yet: retry later, do not fail."""
        ...


class ReceiptSource(Protocol):
    def fetch_receipts(self, note_id: str) -> List[Dict[str, Any]]:
        """May return a subset on timeout; never relies on earlier calls."""
        ...


class Publisher(Protocol):
    def publish(self, template: Mapping[str, Any]) -> str:
        """Sign and broadcast an event template, returning the event id."""
        ...


class PaymentSender(Protocol):
    def pay(self, invoice: str) -> PaymentProof:
        ...
