"""
Moving SOL between the main wallet and the trading wallets.

distribute_sol splits the main wallet's balance (minus a reserve) evenly
across the trading wallets. collect_sol closes the trading wallets' empty
and wrapped-SOL token accounts and sweeps their SOL back to the main wallet.
Both work wallet by wallet: a failure is logged and the next wallet is tried.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import transfer, TransferParams
import structlog

from .config import LAMPORTS_PER_SOL, TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID, WSOL_MINT
from .cpmm import close_account_ix
from .errors import FundingError, MarketMakerError
from .rpc import RPCClient
from .wallet import Wallet

logger = structlog.get_logger(__name__)

# Base fee for a single-signature transaction with no priority fee
SIGNATURE_FEE_LAMPORTS = 5000


@dataclass
class TransferResult:
    """Outcome of one SOL transfer to or from a trading wallet."""
    wallet: str
    lamports: int
    signature: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.signature is not None and self.error is None

    @property
    def sol(self) -> float:
        return self.lamports / LAMPORTS_PER_SOL


async def send_instructions(
    rpc: RPCClient,
    payer: Wallet,
    instructions: List[Instruction],
    confirm_timeout_seconds: float,
) -> str:
    """Sign with the payer, send, and wait for confirmation. Returns the signature."""
    blockhash = Hash.from_string(await rpc.get_latest_blockhash())
    message = MessageV0.try_compile(
        payer=payer.pubkey,
        instructions=instructions,
        address_lookup_table_accounts=[],
        recent_blockhash=blockhash,
    )
    signature = await rpc.send_transaction(payer.sign_message(message))
    await rpc.confirm_transaction(signature, timeout_seconds=confirm_timeout_seconds)
    return signature


def transfer_ix(source: Pubkey, destination: Pubkey, lamports: int) -> Instruction:
    return transfer(TransferParams(from_pubkey=source, to_pubkey=destination, lamports=lamports))


async def distribute_sol(
    rpc: RPCClient,
    main_wallet: Wallet,
    wallets: Sequence[Wallet],
    reserve_lamports: int,
    confirm_timeout_seconds: float = 30.0,
    pause_seconds: float = 0.5,
) -> List[TransferResult]:
    """
    Send an equal share of the main wallet's balance to every wallet.

    The main wallet keeps reserve_lamports for fees. Raises FundingError
    if nothing is left to share.
    """
    if not wallets:
        raise FundingError("No wallets to distribute to")

    balance = await rpc.get_balance(main_wallet.pubkey)
    distributable = balance - reserve_lamports
    per_wallet = distributable // len(wallets) if distributable > 0 else 0
    if per_wallet <= 0:
        raise FundingError(
            f"Insufficient balance for distribution: main wallet holds "
            f"{balance / LAMPORTS_PER_SOL:.4f} SOL, reserve is {reserve_lamports / LAMPORTS_PER_SOL:.4f} SOL"
        )

    logger.info(
        "distribution_started",
        main_wallet=main_wallet.short_address,
        balance_sol=balance / LAMPORTS_PER_SOL,
        wallets=len(wallets),
        per_wallet_sol=per_wallet / LAMPORTS_PER_SOL
    )

    results = []
    for i, wallet in enumerate(wallets):
        if i and pause_seconds:
            await asyncio.sleep(pause_seconds)

        result = TransferResult(wallet=wallet.address, lamports=per_wallet)
        try:
            result.signature = await send_instructions(
                rpc,
                main_wallet,
                [transfer_ix(main_wallet.pubkey, wallet.pubkey, per_wallet)],
                confirm_timeout_seconds,
            )
            logger.info("wallet_funded", wallet=wallet.short_address, sol=result.sol,
                        signature=result.signature)
        except MarketMakerError as e:
            result.error = str(e)
            logger.warning("wallet_funding_failed", wallet=wallet.short_address, error=str(e))
        results.append(result)

    funded = [r for r in results if r.success]
    logger.info(
        "distribution_complete",
        funded=len(funded),
        failed=len(results) - len(funded),
        total_sol=sum(r.lamports for r in funded) / LAMPORTS_PER_SOL
    )
    return results


async def close_token_accounts(
    rpc: RPCClient,
    wallet: Wallet,
    confirm_timeout_seconds: float = 30.0,
) -> int:
    """
    Close the wallet's wrapped-SOL and empty token accounts, returning rent
    (and wrapped SOL) to the wallet. Accounts still holding another token
    are left open. Returns the number of accounts closed.
    """
    closed = 0
    for program_id in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
        token_program = Pubkey.from_string(program_id)
        accounts = await rpc.get_token_accounts_by_owner(wallet.pubkey, program_id=program_id)

        for account in accounts:
            if account.amount > 0 and account.mint != WSOL_MINT:
                logger.warning(
                    "token_account_not_empty",
                    wallet=wallet.short_address,
                    account=account.address,
                    mint=account.mint,
                    amount=account.amount
                )
                continue

            ix = close_account_ix(
                Pubkey.from_string(account.address), wallet.pubkey, wallet.pubkey, token_program
            )
            try:
                signature = await send_instructions(rpc, wallet, [ix], confirm_timeout_seconds)
            except MarketMakerError as e:
                logger.warning("token_account_close_failed", account=account.address, error=str(e))
                continue

            closed += 1
            logger.info("token_account_closed", wallet=wallet.short_address,
                        account=account.address, signature=signature)
    return closed


async def collect_sol(
    rpc: RPCClient,
    main_wallet: Pubkey,
    wallets: Sequence[Wallet],
    confirm_timeout_seconds: float = 30.0,
    pause_seconds: float = 0.5,
) -> List[TransferResult]:
    """
    Sweep every wallet's SOL back to the main wallet.

    Each wallet's token accounts are closed first so their rent is swept
    too. A wallet left with no more than the transfer fee is skipped.
    """
    logger.info("collection_started", main_wallet=str(main_wallet), wallets=len(wallets))

    results = []
    for i, wallet in enumerate(wallets):
        if i and pause_seconds:
            await asyncio.sleep(pause_seconds)

        try:
            await close_token_accounts(rpc, wallet, confirm_timeout_seconds)
            balance = await rpc.get_balance(wallet.pubkey)
        except MarketMakerError as e:
            logger.warning("wallet_collect_failed", wallet=wallet.short_address, error=str(e))
            results.append(TransferResult(wallet=wallet.address, lamports=0, error=str(e)))
            continue

        if balance <= SIGNATURE_FEE_LAMPORTS:
            logger.info("wallet_empty", wallet=wallet.short_address, lamports=balance)
            continue

        result = TransferResult(wallet=wallet.address, lamports=balance - SIGNATURE_FEE_LAMPORTS)
        try:
            result.signature = await send_instructions(
                rpc,
                wallet,
                [transfer_ix(wallet.pubkey, main_wallet, result.lamports)],
                confirm_timeout_seconds,
            )
            logger.info("wallet_collected", wallet=wallet.short_address, sol=result.sol,
                        signature=result.signature)
        except MarketMakerError as e:
            result.error = str(e)
            logger.warning("wallet_collect_failed", wallet=wallet.short_address, error=str(e))
        results.append(result)

    collected = sum(r.lamports for r in results if r.success)
    logger.info("collection_complete", total_sol=collected / LAMPORTS_PER_SOL)
    return results
