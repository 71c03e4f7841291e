from __future__ import annotations

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

from .project_constants import (
    BLOCK_CADENCE,
    CONFIRMATIONS_REQUIRED,
    MEMPOOL_API_URL,
    MIN_TICKET_PURCHASE,
    PLATFORM_FEE_PERCENT,
    SALES_CLOSE_BLOCKS_BEFORE_DRAW,
)


@dataclass(frozen=True)
class LotteryConfig:
    block_cadence: int = BLOCK_CADENCE
    sales_close_blocks_before_draw: int = SALES_CLOSE_BLOCKS_BEFORE_DRAW
    confirmations_required: int = CONFIRMATIONS_REQUIRED
    min_ticket_purchase: int = MIN_TICKET_PURCHASE
    platform_fee_percent: int = PLATFORM_FEE_PERCENT

    def __post_init__(self) -> None:
        if self.block_cadence <= 0:
            raise ValueError("block_cadence must be a positive number of blocks")
        if not 0 <= self.sales_close_blocks_before_draw < self.block_cadence:
            raise ValueError(
                "sales_close_blocks_before_draw must be >= 0 and < block_cadence "
                f"({self.sales_close_blocks_before_draw} vs {self.block_cadence})"
            )
        if self.confirmations_required < 0:
            raise ValueError("confirmations_required must be >= 0")
        if self.min_ticket_purchase < 1:
            raise ValueError("min_ticket_purchase must be at least 1 sat")
        if not 0 <= self.platform_fee_percent <= 100:
            raise ValueError("platform_fee_percent must be between 0 and 100")


def _int_from_env(key: str, default: int) -> int:
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class Settings:
    mempool_url: str
    lottery: LotteryConfig = field(default_factory=LotteryConfig)

    @staticmethod
    def from_env(mempool_url_override: str | None = None) -> "Settings":
        load_dotenv()

        lottery = LotteryConfig(
            block_cadence=_int_from_env("LOTTERY_BLOCK_CADENCE", BLOCK_CADENCE),
            sales_close_blocks_before_draw=_int_from_env(
                "LOTTERY_SALES_CLOSE_BLOCKS", SALES_CLOSE_BLOCKS_BEFORE_DRAW
            ),
            confirmations_required=_int_from_env(
                "LOTTERY_CONFIRMATIONS", CONFIRMATIONS_REQUIRED
            ),
            min_ticket_purchase=_int_from_env(
                "LOTTERY_MIN_TICKET_PURCHASE", MIN_TICKET_PURCHASE
            ),
            platform_fee_percent=_int_from_env(
                "LOTTERY_PLATFORM_FEE_PERCENT", PLATFORM_FEE_PERCENT
            ),
        )

        # If user provides --mempool-url, trust it.
        if mempool_url_override:
            return Settings(mempool_url=mempool_url_override, lottery=lottery)

        env_url = os.getenv("MEMPOOL_API_URL", "").strip()
        return Settings(mempool_url=env_url or MEMPOOL_API_URL, lottery=lottery)
