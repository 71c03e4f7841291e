"""
Public rules of the Lightning lottery.

These values define how rounds are scheduled and how tickets are counted.
Changing them changes who can win and MUST be publicly announced.
"""

# One round every 100 blocks (~16.7 hours)
BLOCK_CADENCE = 100

# Ticket sales close this many blocks before the draw block
SALES_CLOSE_BLOCKS_BEFORE_DRAW = 6

# Confirmations on top of the draw block before paying out
CONFIRMATIONS_REQUIRED = 6

# 1 sat = 1 ticket
MIN_TICKET_PURCHASE = 1

PLATFORM_FEE_PERCENT = 0

MINUTES_PER_BLOCK = 10

MEMPOOL_API_URL = "https://mempool.space/api"

# Nostr event kinds
ZAP_RECEIPT_KIND = 9735
TEXT_NOTE_KIND = 1
LOTTERY_COMMITMENT_KIND = 30078  # addressable range

LOTTERY_TAG = "nostr-lottery"

TOOL_NAME = "lightning-verifiable-lottery"
TOOL_VERSION = "1.0.0"
