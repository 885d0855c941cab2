# src/bm_ledger/application/submission.py
"""Bounded, typed settlement calls shared by every caller of the program."""
import asyncio
import logging
from collections.abc import Awaitable

from src.bm_common.errors import LedgerOutcomeUnknownError, TradeSubmissionError

logger = logging.getLogger(__name__)


async def submit_instruction(action: str, call: Awaitable[str], timeout_seconds: float) -> str:
    """Await one settlement instruction for at most ``timeout_seconds``.

    TradeSubmissionError subclasses pass through unchanged. A timeout or any
    other exception becomes LedgerOutcomeUnknownError, since the instruction
    may already have reached the ledger.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except TradeSubmissionError:
        raise
    except asyncio.TimeoutError as e:
        raise LedgerOutcomeUnknownError(
            f"{action} timed out after {timeout_seconds}s"
        ) from e
    except Exception as e:
        logger.exception("Settlement %s failed with an untyped error", action)
        raise LedgerOutcomeUnknownError(f"{action}: {e}") from e
