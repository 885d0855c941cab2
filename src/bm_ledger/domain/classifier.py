"""Transaction classification by program log lines.

Best-effort heuristic: the settlement program does not emit a structured
event schema we can decode here, so classification is substring matching on
log lines. Everything that does not match is UNKNOWN and must not be treated
as relevant.
"""

from collections.abc import Iterable

from src.bm_common.enums import TransactionKind
from src.bm_ledger.domain.models import LedgerTransaction

# Order matters: first kind with a matching marker wins.
_MARKERS: tuple[tuple[TransactionKind, tuple[str, ...]], ...] = (
    (TransactionKind.TRADE, ("Trade executed", "Instruction: Buy", "Instruction: Sell")),
    (TransactionKind.MARKET_INIT, ("Market initialized", "Instruction: InitializeMarket")),
    (TransactionKind.PRICE_UPDATE, ("Price updated", "Instruction: UpdatePrice")),
)


def classify_logs(logs: Iterable[str]) -> TransactionKind:
    lines = list(logs)
    for kind, markers in _MARKERS:
        if any(marker in line for line in lines for marker in markers):
            return kind
    return TransactionKind.UNKNOWN


def classify_transaction(tx: LedgerTransaction) -> TransactionKind:
    return classify_logs(tx.log_messages)
