"""
Wallet abstraction for the market maker.
Handles loading keys from the wallet directory and signing transactions.
"""

import re
import base58
from pathlib import Path
from typing import List, Optional
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.message import MessageV0
from solders.transaction import VersionedTransaction
import structlog

from .errors import NoWalletsError

logger = structlog.get_logger(__name__)

WALLET_FILE_PATTERN = re.compile(r"wallet_(\d+)")


class Wallet:
    """Wallet abstraction for signing Solana transactions."""

    def __init__(self, private_key: str, name: Optional[str] = None):
        """Initialize wallet from a base58 private key."""
        self.name = name
        self._keypair: Optional[Keypair] = None
        self._load_keypair(private_key)

    @classmethod
    def from_keypair(cls, keypair: Keypair, name: Optional[str] = None) -> "Wallet":
        """Wrap an existing keypair."""
        return cls(str(keypair), name=name)

    def _load_keypair(self, private_key: str) -> None:
        """Load keypair from a base58 private key."""
        try:
            private_key_bytes = base58.b58decode(private_key.strip())

            # Solana keypairs are 64 bytes (32 byte private + 32 byte public)
            if len(private_key_bytes) == 64:
                self._keypair = Keypair.from_bytes(private_key_bytes)
            elif len(private_key_bytes) == 32:
                # Just the private key seed
                self._keypair = Keypair.from_seed(private_key_bytes)
            else:
                raise ValueError(f"Invalid private key length: {len(private_key_bytes)}")
        except Exception as e:
            raise ValueError(f"Failed to load wallet: {e}") from e

    @property
    def keypair(self) -> Keypair:
        """Get the keypair."""
        if self._keypair is None:
            raise ValueError("Wallet not initialized")
        return self._keypair

    @property
    def pubkey(self) -> Pubkey:
        """Get the public key."""
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        """Get the wallet address as string."""
        return str(self.pubkey)

    @property
    def short_address(self) -> str:
        return self.address[:8] + "..."

    def sign_message(self, message: MessageV0) -> VersionedTransaction:
        """Sign a compiled v0 message into a transaction."""
        return VersionedTransaction(message, [self.keypair])

    def __repr__(self) -> str:
        return f"Wallet({self.name or self.short_address})"


def wallet_index(path: Path) -> Optional[int]:
    """The <n> of a wallet_<n>.txt file, or None for other names."""
    match = WALLET_FILE_PATTERN.fullmatch(path.stem)
    return int(match.group(1)) if match else None


def _wallet_sort_key(path: Path):
    # Numbered wallets first in generation order, then anything else by name
    index = wallet_index(path)
    if index is None:
        return (1, 0, path.name)
    return (0, index, path.name)


def load_wallets(wallet_dir: str) -> List[Wallet]:
    """
    Load every *.txt keypair in the wallet directory.

    wallet_<n>.txt files come first, ordered by n; other files follow by
    name. Files that cannot be decoded are skipped with a warning. Raises
    NoWalletsError if the directory is missing or holds no usable key.
    """
    directory = Path(wallet_dir)
    if not directory.is_dir():
        raise NoWalletsError(
            f"Wallet directory {wallet_dir} not found. Run with --wallet first to generate wallets."
        )

    wallets = []
    for path in sorted(directory.glob("*.txt"), key=_wallet_sort_key):
        try:
            wallets.append(Wallet(path.read_text(), name=path.stem))
        except ValueError as e:
            logger.warning("wallet_file_skipped", file=path.name, error=str(e))

    if not wallets:
        raise NoWalletsError(f"No valid wallets found in {wallet_dir}")

    logger.info("wallets_loaded", count=len(wallets), wallet_dir=wallet_dir)
    return wallets


def generate_wallets(wallet_dir: str, count: int) -> List[Wallet]:
    """
    Create `count` new keypairs and save them as wallet_<n>.txt.

    Numbering continues after the highest existing index. Existing key
    files are never overwritten.
    """
    directory = Path(wallet_dir)
    directory.mkdir(parents=True, exist_ok=True)

    indexes = [wallet_index(path) for path in directory.glob("wallet_*.txt")]
    next_index = max((i for i in indexes if i is not None), default=0) + 1

    wallets = []
    for i in range(next_index, next_index + count):
        keypair = Keypair()
        path = directory / f"wallet_{i}.txt"
        with open(path, 'x') as f:
            f.write(str(keypair))
        wallets.append(Wallet.from_keypair(keypair, name=path.stem))
        logger.info("wallet_generated", index=i, address=str(keypair.pubkey()))

    logger.info("wallets_generated", count=count, wallet_dir=wallet_dir)
    return wallets
