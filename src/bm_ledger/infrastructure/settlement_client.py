"""Signing client for the settlement program.

Builds Anchor instructions (8-byte discriminator, little-endian args), signs
them with the admin keypair and sends them through the ledger JSON-RPC node,
then polls getSignatureStatuses until the signature is confirmed.

The server holds only the admin key. buy and sell go through here only when
the trader is that key; wallet trades arrive already signed.
"""

import asyncio
import base64
import hashlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import RENT
from solders.transaction import Transaction

from config.settings import Settings
from src.bm_common.errors import (
    LedgerOutcomeUnknownError,
    LedgerRejectedError,
    LedgerRpcError,
    TradeNotSubmittedError,
)
from src.bm_ledger.infrastructure.rpc_client import SolanaRpcClient
from src.bm_market.domain.models import Market

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
MARKET_SEED = b"market"
CONFIRMED_STATUSES = ("confirmed", "finalized")


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def market_address(bond_mint: Pubkey, program_id: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address([MARKET_SEED, bytes(bond_mint)], program_id)
    return address


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)], ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return address


def load_keypair(path: str) -> Keypair:
    """Reads a keypair file: a JSON array of the 64 secret-key bytes."""
    return Keypair.from_bytes(bytes(json.loads(Path(path).read_text())))


def _u64(value: int) -> bytes:
    return value.to_bytes(8, "little")


def _u128(value: int) -> bytes:
    return value.to_bytes(16, "little")


def _first_status(result: Any) -> dict[str, Any] | None:
    if not isinstance(result, dict):
        return None
    value = result.get("value") or [None]
    status = value[0]
    return status if isinstance(status, dict) else None


@dataclass(frozen=True)
class SettlementClientConfig:
    program_id: str
    usdc_mint: str
    keypair_path: str
    confirm_timeout_seconds: float = 20.0
    poll_interval_seconds: float = 1.0

    @classmethod
    def from_settings(cls, s: Settings) -> "SettlementClientConfig":
        return cls(
            program_id=s.SETTLEMENT_PROGRAM_ID,
            usdc_mint=s.SETTLEMENT_USDC_MINT,
            keypair_path=s.SETTLEMENT_KEYPAIR_PATH,
            confirm_timeout_seconds=s.SETTLEMENT_CONFIRM_TIMEOUT_SECONDS,
            poll_interval_seconds=s.SETTLEMENT_POLL_INTERVAL_SECONDS,
        )


class AnchorSettlementClient:
    def __init__(
        self, config: SettlementClientConfig, rpc: SolanaRpcClient, signer: Keypair
    ) -> None:
        self._config = config
        self._rpc = rpc
        self._signer = signer
        self._program_id = Pubkey.from_string(config.program_id)
        self._usdc_mint = Pubkey.from_string(config.usdc_mint)

    @property
    def signer_pubkey(self) -> str:
        return str(self._signer.pubkey())

    # ------------------------------------------------------------------
    # Instructions
    # ------------------------------------------------------------------

    async def initialize_market(self, market: Market, price_scaled: int) -> str:
        def build() -> Instruction:
            bond_mint = Pubkey.from_string(market.bond_mint)
            pda = self._market_pda(market)
            return Instruction(
                self._program_id,
                instruction_discriminator("initialize_market") + _u128(price_scaled),
                [
                    AccountMeta(pda, is_signer=False, is_writable=True),
                    AccountMeta(bond_mint, is_signer=False, is_writable=False),
                    AccountMeta(self._usdc_mint, is_signer=False, is_writable=False),
                    AccountMeta(self._vault_bond(market, pda), is_signer=False, is_writable=True),
                    AccountMeta(self._vault_usdc(market, pda), is_signer=False, is_writable=True),
                    AccountMeta(self._signer.pubkey(), is_signer=True, is_writable=True),
                    AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
                    AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
                    AccountMeta(RENT, is_signer=False, is_writable=False),
                ],
            )

        return await self._submit("initialize_market", build)

    async def buy(self, market: Market, trader: str, amount: int) -> str:
        self._check_trader("buy", trader)

        def build() -> Instruction:
            bond_mint = Pubkey.from_string(market.bond_mint)
            pda = self._market_pda(market)
            owner = self._signer.pubkey()
            return Instruction(
                self._program_id,
                instruction_discriminator("buy") + _u64(amount),
                [
                    AccountMeta(pda, is_signer=False, is_writable=True),
                    AccountMeta(owner, is_signer=True, is_writable=True),
                    AccountMeta(
                        associated_token_address(owner, self._usdc_mint),
                        is_signer=False, is_writable=True,
                    ),
                    AccountMeta(
                        associated_token_address(owner, bond_mint),
                        is_signer=False, is_writable=True,
                    ),
                    AccountMeta(self._vault_usdc(market, pda), is_signer=False, is_writable=True),
                    AccountMeta(self._vault_bond(market, pda), is_signer=False, is_writable=True),
                    AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
                ],
            )

        return await self._submit("buy", build)

    async def sell(self, market: Market, trader: str, amount: int) -> str:
        self._check_trader("sell", trader)

        def build() -> Instruction:
            bond_mint = Pubkey.from_string(market.bond_mint)
            pda = self._market_pda(market)
            owner = self._signer.pubkey()
            return Instruction(
                self._program_id,
                instruction_discriminator("sell") + _u64(amount),
                [
                    AccountMeta(pda, is_signer=False, is_writable=True),
                    AccountMeta(owner, is_signer=True, is_writable=True),
                    AccountMeta(
                        associated_token_address(owner, bond_mint),
                        is_signer=False, is_writable=True,
                    ),
                    AccountMeta(
                        associated_token_address(owner, self._usdc_mint),
                        is_signer=False, is_writable=True,
                    ),
                    AccountMeta(self._vault_bond(market, pda), is_signer=False, is_writable=True),
                    AccountMeta(self._vault_usdc(market, pda), is_signer=False, is_writable=True),
                    AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
                ],
            )

        return await self._submit("sell", build)

    async def update_price(self, market: Market, price_scaled: int) -> str:
        return await self._submit(
            "update_price",
            lambda: self._admin_instruction("update_price", market, _u128(price_scaled)),
        )

    async def pause(self, market: Market) -> str:
        # the program toggles the flag; callers only pause unpaused markets
        return await self._submit(
            "pause", lambda: self._admin_instruction("pause", market, b"")
        )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _admin_instruction(self, name: str, market: Market, args: bytes) -> Instruction:
        return Instruction(
            self._program_id,
            instruction_discriminator(name) + args,
            [
                AccountMeta(self._market_pda(market), is_signer=False, is_writable=True),
                AccountMeta(self._signer.pubkey(), is_signer=True, is_writable=False),
            ],
        )

    def _market_pda(self, market: Market) -> Pubkey:
        if market.market_pda:
            return Pubkey.from_string(market.market_pda)
        return market_address(Pubkey.from_string(market.bond_mint), self._program_id)

    def _vault_bond(self, market: Market, pda: Pubkey) -> Pubkey:
        if market.vault_bond_account:
            return Pubkey.from_string(market.vault_bond_account)
        return associated_token_address(pda, Pubkey.from_string(market.bond_mint))

    def _vault_usdc(self, market: Market, pda: Pubkey) -> Pubkey:
        if market.vault_usdc_account:
            return Pubkey.from_string(market.vault_usdc_account)
        return associated_token_address(pda, self._usdc_mint)

    def _check_trader(self, action: str, trader: str) -> None:
        if trader != self.signer_pubkey:
            raise TradeNotSubmittedError(
                f"{action} for {trader} must be signed by the trader's wallet"
            )

    # ------------------------------------------------------------------
    # Send and confirm
    # ------------------------------------------------------------------

    async def _submit(self, action: str, build: Callable[[], Instruction]) -> str:
        try:
            instruction = build()
        except (ValueError, OverflowError) as e:
            raise TradeNotSubmittedError(f"{action}: {e}") from e

        try:
            latest = await self._rpc.request("getLatestBlockhash", [{"commitment": "confirmed"}])
            blockhash = Hash.from_string(latest["value"]["blockhash"])
        except LedgerRpcError as e:
            raise TradeNotSubmittedError(f"{action}: {e.message}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise TradeNotSubmittedError(f"{action}: malformed blockhash response") from e

        message = Message.new_with_blockhash([instruction], self._signer.pubkey(), blockhash)
        tx = Transaction([self._signer], message, blockhash)
        signature = str(tx.signatures[0])
        encoded = base64.b64encode(bytes(tx)).decode()

        try:
            await self._rpc.request(
                "sendTransaction",
                [encoded, {"encoding": "base64", "preflightCommitment": "confirmed"}],
            )
        except LedgerRpcError as e:
            if e.rpc_code is not None:
                raise LedgerRejectedError(e.message, signature) from e
            raise LedgerOutcomeUnknownError(e.message, signature) from e

        logger.info("Settlement %s sent (sig=%s)", action, signature)
        await self._confirm(action, signature)
        return signature

    async def _confirm(self, action: str, signature: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.confirm_timeout_seconds
        while True:
            try:
                result = await self._rpc.request(
                    "getSignatureStatuses", [[signature], {"searchTransactionHistory": False}]
                )
                status = _first_status(result)
            except LedgerRpcError:
                logger.warning("Status check for %s failed", signature, exc_info=True)
                status = None

            if status is not None:
                if status.get("err") is not None:
                    raise LedgerRejectedError(f"{action}: {status['err']}", signature)
                if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return
            if loop.time() >= deadline:
                raise LedgerOutcomeUnknownError(
                    f"{action} not confirmed within {self._config.confirm_timeout_seconds}s",
                    signature,
                )
            await asyncio.sleep(self._config.poll_interval_seconds)
