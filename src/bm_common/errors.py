"""Unified error codes and custom exceptions.

Error code ranges:
  3xxx: Market
  4xxx: Trade
  6xxx: Ledger / settlement
  7xxx: Pricing
"""

from src.bm_common.enums import SubmissionOutcome


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 3xxx: Market ---

class MarketNotFoundError(AppError):
    def __init__(self, market_id: int) -> None:
        super().__init__(3001, f"Market not found: {market_id}", 404)


class MarketNotActiveError(AppError):
    def __init__(self, market_id: int, bond_status: str) -> None:
        super().__init__(
            3002, f"Bond for market {market_id} is not active (status={bond_status})", 409
        )


class MarketPausedError(AppError):
    def __init__(self, market_id: int) -> None:
        super().__init__(3003, f"Market is paused: {market_id}", 409)


# --- 4xxx: Trade ---

class InvalidTradeAmountError(AppError):
    def __init__(self, amount: int) -> None:
        super().__init__(4001, f"Trade amount must be positive, got {amount}", 400)


class PriceLimitExceededError(AppError):
    def __init__(self, side: str, current_price: int, limit_price: int) -> None:
        if side == "buy":
            detail = f"current price {current_price} exceeds maximum {limit_price}"
        else:
            detail = f"current price {current_price} below minimum {limit_price}"
        super().__init__(4002, f"Price limit violated: {detail}", 409)
        self.current_price = current_price
        self.limit_price = limit_price


class DuplicateSignatureError(AppError):
    def __init__(self, signature: str) -> None:
        super().__init__(
            4005, f"Trade with settlement signature already exists: {signature}", 409
        )
        self.signature = signature


# --- 6xxx: Ledger / settlement ---

class LedgerRpcError(AppError):
    """Transient RPC failure: timeout, non-200, malformed payload, JSON-RPC error."""

    def __init__(self, method: str, detail: str, rpc_code: int | None = None) -> None:
        super().__init__(6001, f"Ledger RPC {method} failed: {detail}", 503)
        self.method = method
        # set only when the node answered with a JSON-RPC error object
        self.rpc_code = rpc_code


class TradeSubmissionError(AppError):
    """Typed settlement failure.

    ``outcome`` tells the caller how far the instruction got, so it can tell
    "never submitted" apart from "rejected by the ledger" and "submitted,
    outcome unknown". None of these may be retried with the same signature.
    """

    def __init__(
        self,
        code: int,
        message: str,
        outcome: SubmissionOutcome,
        signature: str | None = None,
        http_status: int = 502,
    ) -> None:
        super().__init__(code, message, http_status)
        self.outcome = outcome
        self.signature = signature


class TradeNotSubmittedError(TradeSubmissionError):
    def __init__(self, detail: str) -> None:
        super().__init__(
            6002, f"Instruction was not submitted: {detail}", SubmissionOutcome.NOT_SUBMITTED
        )


class LedgerRejectedError(TradeSubmissionError):
    def __init__(self, detail: str, signature: str | None = None) -> None:
        super().__init__(
            6003,
            f"Ledger rejected instruction: {detail}",
            SubmissionOutcome.REJECTED,
            signature=signature,
            http_status=422,
        )


class LedgerOutcomeUnknownError(TradeSubmissionError):
    def __init__(self, detail: str, signature: str | None = None) -> None:
        super().__init__(
            6004,
            f"Instruction submitted, outcome unknown: {detail}",
            SubmissionOutcome.UNKNOWN,
            signature=signature,
            http_status=504,
        )


# --- 7xxx: Pricing ---

class PriceChangeRejectedError(AppError):
    def __init__(self, market_id: int, change_pct: float | None, reason: str) -> None:
        pct = "n/a" if change_pct is None else f"{change_pct:.4f}%"
        super().__init__(
            7001, f"Price update rejected for market {market_id} ({pct}): {reason}", 422
        )
        self.market_id = market_id
        self.change_pct = change_pct


class FeedUnavailableError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(7002, f"Bond feed unavailable: {detail}", 503)
