"""Synthetic ledger for local demos.

Only wired in when LEDGER_DEMO_MODE is set; production never falls back to it.
"""

import logging
import time

from src.bm_ledger.domain.models import LedgerTransaction

logger = logging.getLogger(__name__)

DEMO_SIGNATURE = (
    "5j7s1QjNeEKCYJfxNdKRdCdKUuqpHFMsCQ5VmBZgqG8uJF9NjZrRwJq4HQ2Yj7F3Qv8RZvJhKdM2FqLxG5N2ZpQr"
)


class DemoLedgerClient:
    def __init__(self, slot: int = 200_000_000) -> None:
        self._slot = slot

    async def get_recent_transactions(
        self, program_id: str, limit: int | None = None
    ) -> list[LedgerTransaction]:
        logger.warning("LEDGER_DEMO_MODE is on: returning synthetic transactions")
        tx = LedgerTransaction(
            signature=DEMO_SIGNATURE,
            slot=self._slot,
            block_time=int(time.time()),
            succeeded=True,
            log_messages=(
                "Program log: Instruction: Buy",
                "Program log: Trade executed: 100 tokens at 1.05 USDC",
            ),
            account_keys=(program_id, "demo_trader_wallet", "demo_market_pda", "demo_vault"),
        )
        return [tx][: limit or 1]
