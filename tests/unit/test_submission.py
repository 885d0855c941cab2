# tests/unit/test_submission.py
"""Unit tests for submit_instruction: bounded and typed settlement calls."""
import asyncio

import pytest

from src.bm_common.enums import SubmissionOutcome
from src.bm_common.errors import (
    LedgerOutcomeUnknownError,
    TradeNotSubmittedError,
    TradeSubmissionError,
)
from src.bm_ledger.application.submission import submit_instruction

pytestmark = pytest.mark.asyncio


async def _returns(value: str) -> str:
    return value


async def _raises(exc: Exception) -> str:
    raise exc


async def _never_returns() -> str:
    await asyncio.Event().wait()
    return "unreachable"


async def test_returns_signature() -> None:
    assert await submit_instruction("pause", _returns("sig-1"), 1.0) == "sig-1"


async def test_timeout_is_outcome_unknown() -> None:
    with pytest.raises(LedgerOutcomeUnknownError) as exc_info:
        await submit_instruction("update_price", _never_returns(), 0.01)

    assert exc_info.value.outcome is SubmissionOutcome.UNKNOWN
    assert exc_info.value.signature is None
    assert "update_price timed out" in exc_info.value.message


async def test_typed_error_passes_through() -> None:
    error = TradeNotSubmittedError("no blockhash")

    with pytest.raises(TradeNotSubmittedError) as exc_info:
        await submit_instruction("buy", _raises(error), 1.0)
    assert exc_info.value is error


@pytest.mark.parametrize(
    "exc", [ConnectionError("rpc connection reset"), RuntimeError("boom"), KeyError("value")]
)
async def test_untyped_error_is_outcome_unknown(exc: Exception) -> None:
    with pytest.raises(TradeSubmissionError) as exc_info:
        await submit_instruction("sell", _raises(exc), 1.0)

    assert isinstance(exc_info.value, LedgerOutcomeUnknownError)
    assert exc_info.value.__cause__ is exc
