# tests/unit/test_classifier.py
"""Unit tests for log-based transaction classification."""
from src.bm_common.enums import TransactionKind
from src.bm_ledger.domain.classifier import classify_logs, classify_transaction
from src.bm_ledger.domain.models import LedgerTransaction


def _tx(*logs: str) -> LedgerTransaction:
    return LedgerTransaction(
        signature="sig", slot=1, block_time=None, succeeded=True, log_messages=logs
    )


class TestClassifyLogs:
    def test_trade_markers(self) -> None:
        assert classify_logs(["Program log: Instruction: Buy"]) is TransactionKind.TRADE
        assert classify_logs(["Program log: Instruction: Sell"]) is TransactionKind.TRADE
        assert classify_logs(["Program log: Trade executed: 100"]) is TransactionKind.TRADE

    def test_market_init_markers(self) -> None:
        assert classify_logs(["Program log: Instruction: InitializeMarket"]) is (
            TransactionKind.MARKET_INIT
        )
        assert classify_logs(["Market initialized"]) is TransactionKind.MARKET_INIT

    def test_price_update_markers(self) -> None:
        assert classify_logs(["Program log: Instruction: UpdatePrice"]) is (
            TransactionKind.PRICE_UPDATE
        )
        assert classify_logs(["Price updated to 1050000"]) is TransactionKind.PRICE_UPDATE

    def test_unmatched_is_unknown(self) -> None:
        assert classify_logs(["Program log: Instruction: Withdraw"]) is TransactionKind.UNKNOWN
        assert classify_logs([]) is TransactionKind.UNKNOWN

    def test_bare_buy_word_is_not_a_trade(self) -> None:
        assert classify_logs(["Program log: Buyback window closed"]) is TransactionKind.UNKNOWN

    def test_trade_wins_over_later_kinds(self) -> None:
        logs = ["Price updated", "Trade executed"]
        assert classify_logs(logs) is TransactionKind.TRADE


class TestClassifyTransaction:
    def test_uses_log_messages(self) -> None:
        assert classify_transaction(_tx("Instruction: Buy")) is TransactionKind.TRADE
