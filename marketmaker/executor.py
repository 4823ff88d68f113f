"""
Transaction executor for the market maker.
Builds, signs and sends CPMM swap transactions for one wallet at a time.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
import structlog

from .blockhash import BlockhashProcessor
from .config import Config
from .cpmm import (
    CpmmPool,
    NATIVE_MINT,
    get_ata,
    create_ata_idempotent_ix,
    wrap_sol_ixs,
    unwrap_sol_ix,
)
from .errors import (
    RPCError,
    StaleBlockhashError,
    TransactionFailedError,
    ConfirmationTimeoutError,
)
from .rpc import RPCClient
from .strategy import Action, TradeDecision, WalletBalances
from .token_accounts import TokenAccountCache
from .wallet import Wallet

logger = structlog.get_logger(__name__)


class FailureKind(Enum):
    RPC_ERROR = "rpc_error"
    ACCOUNT_NOT_FOUND = "account_not_found"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    TRANSACTION_FAILED = "transaction_failed"
    STALE_BLOCKHASH = "stale_blockhash"
    BUILD_ERROR = "build_error"


@dataclass
class ExecutionResult:
    """Result of a trade execution."""
    success: bool
    signature: Optional[str]
    decision: TradeDecision
    failure: Optional[FailureKind] = None
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def explorer_url(self) -> Optional[str]:
        """Get Solana explorer URL for the transaction."""
        if not self.signature:
            return None
        return f"https://solscan.io/tx/{self.signature}"


class TradeExecutor:
    """Executes buys and sells against a single CPMM pool."""

    def __init__(
        self,
        config: Config,
        rpc_client: RPCClient,
        blockhashes: BlockhashProcessor,
        token_accounts: TokenAccountCache,
        pool: CpmmPool,
    ):
        self.config = config
        self.rpc = rpc_client
        self.blockhashes = blockhashes
        self.token_accounts = token_accounts
        self.pool = pool
        self.target_mint = Pubkey.from_string(config.target_token_mint)
        self.target_token_program = pool.token_program(pool.side_of(self.target_mint))

    def token_account_for(self, owner: Pubkey) -> Pubkey:
        """The wallet's associated account for the traded token."""
        return get_ata(owner, self.target_mint, self.target_token_program)

    async def fetch_balances(self, wallet: Wallet) -> WalletBalances:
        """
        Read SOL and traded-token balances; found token accounts are cached.

        Only the associated token account counts: it is the account the
        swap debits on a sell.
        """
        sol_lamports = await self.rpc.get_balance(wallet.pubkey)
        accounts = await self.rpc.get_token_accounts_by_owner(
            wallet.pubkey, mint=self.config.target_token_mint
        )
        self.token_accounts.add_many(account.address for account in accounts)
        token_account = str(self.token_account_for(wallet.pubkey))
        return WalletBalances(
            sol_lamports=sol_lamports,
            token_amount=sum(a.amount for a in accounts if a.address == token_account),
        )

    async def _ensure_token_account(self, owner: Pubkey) -> List[Instruction]:
        """
        Return the create instruction for the token account if it is not
        known to exist. A cache miss costs one on-chain lookup.
        """
        token_account = self.token_account_for(owner)
        if self.token_accounts.contains(str(token_account)):
            return []

        if await self.rpc.account_exists(str(token_account)):
            self.token_accounts.add(str(token_account))
            return []

        logger.debug("token_account_missing", owner=str(owner)[:8], account=str(token_account))
        return [create_ata_idempotent_ix(owner, owner, self.target_mint, self.target_token_program)]

    def _compute_budget_ixs(self) -> List[Instruction]:
        return [
            set_compute_unit_limit(self.config.compute_unit_limit),
            set_compute_unit_price(self.config.compute_unit_price),
        ]

    async def build_instructions(self, decision: TradeDecision) -> List[Instruction]:
        """Instructions for one buy or sell, wrapping and unwrapping SOL inline."""
        owner = decision.wallet.wallet.pubkey
        token_account = self.token_account_for(owner)
        wsol_account = get_ata(owner, NATIVE_MINT)
        instructions = self._compute_budget_ixs()

        if decision.action is Action.BUY:
            instructions += wrap_sol_ixs(owner, decision.amount)
            instructions += await self._ensure_token_account(owner)
            instructions.append(self.pool.swap_base_input_ix(
                payer=owner,
                input_mint=NATIVE_MINT,
                input_account=wsol_account,
                output_account=token_account,
                amount_in=decision.amount,
                minimum_amount_out=decision.minimum_amount_out,
            ))
        else:
            instructions.append(create_ata_idempotent_ix(owner, owner, NATIVE_MINT))
            instructions.append(self.pool.swap_base_input_ix(
                payer=owner,
                input_mint=self.target_mint,
                input_account=token_account,
                output_account=wsol_account,
                amount_in=decision.amount,
                minimum_amount_out=decision.minimum_amount_out,
            ))

        instructions.append(unwrap_sol_ix(owner))
        return instructions

    async def build_transaction(self, decision: TradeDecision) -> VersionedTransaction:
        """Compile and sign the trade. Raises StaleBlockhashError if no usable blockhash."""
        wallet = decision.wallet.wallet
        instructions = await self.build_instructions(decision)
        blockhash = await self.blockhashes.get_blockhash()

        message = MessageV0.try_compile(
            payer=wallet.pubkey,
            instructions=instructions,
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )
        return wallet.sign_message(message)

    async def execute(self, decision: TradeDecision) -> ExecutionResult:
        """
        Build, sign, send and confirm one trade.

        Never raises and never retries: every failure comes back as an
        ExecutionResult with a FailureKind.
        """
        wallet = decision.wallet.wallet
        started = time.monotonic()
        signature = None

        def failed(kind: FailureKind, error: Exception) -> ExecutionResult:
            logger.warning(
                "trade_failed",
                wallet=wallet.short_address,
                action=decision.action.value,
                amount=decision.amount,
                failure=kind.value,
                error=str(error)
            )
            if kind in (FailureKind.TRANSACTION_FAILED, FailureKind.ACCOUNT_NOT_FOUND):
                # Force a fresh existence check next time
                self.token_accounts.discard(str(self.token_account_for(wallet.pubkey)))
            return ExecutionResult(
                success=False,
                signature=signature,
                decision=decision,
                failure=kind,
                error=str(error),
                elapsed_seconds=time.monotonic() - started,
            )

        logger.info(
            "executing_trade",
            wallet=wallet.short_address,
            action=decision.action.value,
            amount=decision.amount
        )

        try:
            transaction = await self.build_transaction(decision)
        except StaleBlockhashError as e:
            return failed(FailureKind.STALE_BLOCKHASH, e)
        except RPCError as e:
            return failed(FailureKind.RPC_ERROR, e)
        except Exception as e:
            return failed(FailureKind.BUILD_ERROR, e)

        try:
            signature = await self.rpc.send_transaction(transaction)
            logger.info("trade_sent", signature=signature, wallet=wallet.short_address)
            await self.rpc.confirm_transaction(
                signature,
                timeout_seconds=self.config.confirm_timeout_seconds
            )
        except TransactionFailedError as e:
            return failed(FailureKind.TRANSACTION_FAILED, e)
        except ConfirmationTimeoutError as e:
            return failed(FailureKind.CONFIRMATION_TIMEOUT, e)
        except RPCError as e:
            kind = FailureKind.ACCOUNT_NOT_FOUND if _is_account_not_found(e) else FailureKind.RPC_ERROR
            return failed(kind, e)
        except Exception as e:
            return failed(FailureKind.RPC_ERROR, e)

        if decision.action is Action.BUY:
            self.token_accounts.add(str(self.token_account_for(wallet.pubkey)))

        logger.info(
            "trade_executed",
            signature=signature,
            wallet=wallet.short_address,
            action=decision.action.value,
            amount=decision.amount
        )
        return ExecutionResult(
            success=True,
            signature=signature,
            decision=decision,
            elapsed_seconds=time.monotonic() - started,
        )


def _is_account_not_found(error: Exception) -> bool:
    message = str(error).lower()
    return "accountnotfound" in message or "could not find account" in message


def create_executor(
    config: Config,
    rpc_client: RPCClient,
    blockhashes: BlockhashProcessor,
    token_accounts: TokenAccountCache,
    pool: CpmmPool,
) -> TradeExecutor:
    """Factory function to create an executor."""
    return TradeExecutor(config, rpc_client, blockhashes, token_accounts, pool)
