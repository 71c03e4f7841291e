from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from .project_constants import MEMPOOL_API_URL
from .winner import BLOCK_HASH_RE

log = logging.getLogger(__name__)


def _check_hash(value: str, what: str) -> str:
    value = value.strip()
    if not BLOCK_HASH_RE.fullmatch(value):
        raise RuntimeError(f"{what}: expected a 64-hex block hash, got {value!r}")
    return value.lower()


class MempoolClient:
    """Reads block heights and hashes from a mempool.space compatible API."""

    def __init__(
        self,
        base_url: str = MEMPOOL_API_URL,
        timeout_s: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "MempoolClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _get(self, path: str) -> httpx.Response:
        url = f"{self.base_url}{path}"
        log.debug("GET %s", url)
        return self.client.get(url)

    def get_tip_height(self) -> int:
        """Returns the current chain tip height."""
        resp = self._get("/blocks/tip/height")
        resp.raise_for_status()
        return int(resp.text.strip())

    def get_tip_hash(self) -> str:
        resp = self._get("/blocks/tip/hash")
        resp.raise_for_status()
        return _check_hash(resp.text, "blocks/tip/hash")

    def get_block_hash(self, height: int) -> Optional[str]:
        """
        Returns the hash of the block at `height`, or None if it has not been
        mined yet. Callers should poll again later in that case.
        """
        if height < 0:
            raise ValueError(f"Block height must be non-negative, got {height}")
        resp = self._get(f"/block-height/{height}")
        if resp.status_code == 404:
            log.debug("Block %d not found yet", height)
            return None
        resp.raise_for_status()
        return _check_hash(resp.text, f"Block {height}")

    def get_block(self, block_hash: str) -> Dict[str, Any]:
        resp = self._get(f"/block/{block_hash}")
        resp.raise_for_status()
        return resp.json()


def load_block_hash_from_file(path: str, height_hint: Optional[int] = None) -> str:
    """
    Supports:
    1) Raw block hash string in file
    2) JSON object containing:
       - {"hash": "..."} or {"blockhash": "..."}
       - {"height": 123, "hash": "..."}   (verified against height_hint)
       - {"blocks": {"123": "..."}} or {"blocks": {"123": {"hash": "..."}}}
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read().strip()

    # If it's just a block hash string
    if raw and raw[0] != "{":
        return _check_hash(raw, f"Block hash file {path}")

    try:
        j = json.loads(raw)
    except ValueError as e:
        raise RuntimeError(f"Block hash file is not valid JSON or raw string: {e}")

    def pick(obj: Any) -> Optional[str]:
        if isinstance(obj, str):
            return obj
        if isinstance(obj, dict):
            for key in ("hash", "blockhash", "id"):
                if isinstance(obj.get(key), str):
                    return obj[key]
        return None

    if isinstance(j, dict):
        if "blocks" in j and isinstance(j["blocks"], dict):
            if height_hint is not None:
                found = pick(j["blocks"].get(str(int(height_hint))))
                if found:
                    return _check_hash(found, f"Block {height_hint}")
        else:
            found = pick(j)
            if found:
                if (
                    height_hint is not None
                    and "height" in j
                    and int(j["height"]) != int(height_hint)
                ):
                    raise RuntimeError(
                        f"Block file height mismatch: file height={j['height']} "
                        f"vs expected height={height_hint}"
                    )
                return _check_hash(found, f"Block hash file {path}")

    raise RuntimeError(
        "Could not find a block hash in block hash file. "
        "Expected raw string or JSON with hash/blockhash/(blocks[height])."
    )
