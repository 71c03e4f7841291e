from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional

import httpx

from .interfaces import PaymentProof, PaymentSender

log = logging.getLogger(__name__)

LIGHTNING_ADDRESS_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")


class PayoutError(RuntimeError):
    pass


def is_valid_lightning_address(address: str) -> bool:
    return bool(LIGHTNING_ADDRESS_RE.fullmatch(address or ""))


def lightning_address_from_metadata(metadata: Optional[Mapping[str, Any]]) -> Optional[str]:
    """
    Pick the payout address from a Nostr profile (kind 0 content).
    Only lud16 is usable; a bare lud06 LNURL is not decoded.
    """
    if not metadata:
        return None
    lud16 = metadata.get("lud16")
    if isinstance(lud16, str) and lud16:
        return lud16
    if metadata.get("lud06"):
        log.warning("Profile has lud06 but no lud16; cannot pay out to it")
    return None


class LnurlClient:
    """Turns a lightning address into a payable invoice via LNURL-pay."""

    def __init__(
        self, timeout_s: float = 30.0, transport: Optional[httpx.BaseTransport] = None
    ) -> None:
        self.client = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self.client.close()

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            resp = self.client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PayoutError(f"LNURL request to {url} failed: {e}") from e
        if not isinstance(data, dict):
            raise PayoutError(f"LNURL response from {url} is not an object")
        if str(data.get("status", "")).upper() == "ERROR":
            raise PayoutError(f"LNURL error: {data.get('reason', 'unknown')}")
        return data

    def request_invoice(
        self, address: str, amount_sats: int, comment: Optional[str] = None
    ) -> str:
        if not is_valid_lightning_address(address):
            raise PayoutError(f"Not a lightning address: {address!r}")
        if amount_sats <= 0:
            raise PayoutError("Payout amount must be positive")

        user, domain = address.split("@", 1)
        pay_request = self._get_json(f"https://{domain}/.well-known/lnurlp/{user}")

        callback = pay_request.get("callback")
        if not isinstance(callback, str) or not callback:
            raise PayoutError(f"{address}: LNURL pay request has no callback")

        amount_msat = amount_sats * 1000
        min_sendable = int(pay_request.get("minSendable", 0))
        max_sendable = int(pay_request.get("maxSendable", amount_msat))
        if not min_sendable <= amount_msat <= max_sendable:
            raise PayoutError(
                f"{address} accepts {min_sendable}-{max_sendable} msat, "
                f"cannot send {amount_msat}"
            )

        params: Dict[str, Any] = {"amount": amount_msat}
        comment_allowed = int(pay_request.get("commentAllowed", 0))
        if comment and comment_allowed > 0:
            params["comment"] = comment[:comment_allowed]

        invoice = self._get_json(callback, params=params).get("pr")
        if not isinstance(invoice, str) or not invoice:
            raise PayoutError(f"{address}: callback returned no invoice")
        return invoice


def pay_winner(
    sender: PaymentSender,
    lnurl: LnurlClient,
    address: str,
    amount_sats: int,
    comment: Optional[str] = None,
) -> PaymentProof:
    invoice = lnurl.request_invoice(
        address, amount_sats, comment or f"Lottery prize: {amount_sats} sats"
    )
    log.info("Paying %d sats to %s", amount_sats, address)
    proof = sender.pay(invoice)
    if not proof.preimage:
        raise PayoutError("Payment returned no preimage")
    return proof
