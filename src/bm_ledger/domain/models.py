"""Domain models for bm_ledger. No I/O here."""

from dataclasses import dataclass, field
from datetime import datetime

from src.bm_common.datetime_utils import from_unix


@dataclass(frozen=True)
class LedgerTransaction:
    """One transaction touching the settlement program, as reported by RPC."""

    signature: str
    slot: int
    block_time: int | None          # unix seconds, None if the node has no timestamp
    succeeded: bool
    error: object | None = None     # raw `meta.err`
    log_messages: tuple[str, ...] = field(default_factory=tuple)
    account_keys: tuple[str, ...] = field(default_factory=tuple)

    @property
    def confirmed_at(self) -> datetime | None:
        return from_unix(self.block_time)


@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    slot: int
    block_time: int | None
    err: object | None
