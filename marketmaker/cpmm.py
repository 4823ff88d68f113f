"""
Raydium CPMM pool state + swap instruction builder.

Decodes the on-chain pool account once at startup and builds the
instructions a buy or sell needs: associated token accounts, SOL
wrapping, the swap_base_input call and the closing unwrap.
"""

import hashlib
import struct
from dataclasses import dataclass
from typing import List
from solders.pubkey import Pubkey
from solders.instruction import Instruction, AccountMeta
from solders.system_program import transfer, TransferParams, ID as SYSTEM_PROGRAM_ID

from .config import (
    WSOL_MINT,
    TOKEN_PROGRAM_ID,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    RAYDIUM_CPMM_PROGRAM_ID,
)
from .errors import ConfigError

CPMM_PROGRAM = Pubkey.from_string(RAYDIUM_CPMM_PROGRAM_ID)
TOKEN_PROGRAM = Pubkey.from_string(TOKEN_PROGRAM_ID)
ATA_PROGRAM = Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID)
NATIVE_MINT = Pubkey.from_string(WSOL_MINT)

AUTHORITY_SEED = b"vault_and_lp_mint_auth_seed"

# Anchor discriminators: first 8 bytes of sha256("<namespace>:<name>")
POOL_STATE_DISCRIMINATOR = hashlib.sha256(b"account:PoolState").digest()[:8]
SWAP_BASE_INPUT_DISCRIMINATOR = hashlib.sha256(b"global:swap_base_input").digest()[:8]

# PoolState layout (after the 8 byte discriminator), pubkeys are 32 bytes
POOL_STATE_OFFSETS = {
    "amm_config": 8,
    "pool_creator": 40,
    "token_0_vault": 72,
    "token_1_vault": 104,
    "lp_mint": 136,
    "token_0_mint": 168,
    "token_1_mint": 200,
    "token_0_program": 232,
    "token_1_program": 264,
    "observation_key": 296,
    "auth_bump": 328,       # u8
    "status": 329,          # u8
    "lp_mint_decimals": 330,  # u8
    "mint_0_decimals": 331,   # u8
    "mint_1_decimals": 332,   # u8
}
POOL_STATE_MIN_SIZE = 333

# SPL token instruction indexes
TOKEN_IX_CLOSE_ACCOUNT = 9
TOKEN_IX_SYNC_NATIVE = 17
ATA_IX_CREATE_IDEMPOTENT = 1


@dataclass(frozen=True)
class CpmmPool:
    """Accounts needed to swap against one CPMM pool."""
    pool_id: Pubkey
    amm_config: Pubkey
    token_0_vault: Pubkey
    token_1_vault: Pubkey
    token_0_mint: Pubkey
    token_1_mint: Pubkey
    token_0_program: Pubkey
    token_1_program: Pubkey
    observation_key: Pubkey
    mint_0_decimals: int
    mint_1_decimals: int

    @classmethod
    def from_account_data(cls, pool_id: Pubkey, data: bytes) -> "CpmmPool":
        """Decode a PoolState account."""
        if len(data) < POOL_STATE_MIN_SIZE:
            raise ConfigError(f"Pool account {pool_id} is too small ({len(data)} bytes)")
        if data[:8] != POOL_STATE_DISCRIMINATOR:
            raise ConfigError(f"Account {pool_id} is not a CPMM pool")

        def read_pubkey(name: str) -> Pubkey:
            offset = POOL_STATE_OFFSETS[name]
            return Pubkey.from_bytes(data[offset:offset + 32])

        return cls(
            pool_id=pool_id,
            amm_config=read_pubkey("amm_config"),
            token_0_vault=read_pubkey("token_0_vault"),
            token_1_vault=read_pubkey("token_1_vault"),
            token_0_mint=read_pubkey("token_0_mint"),
            token_1_mint=read_pubkey("token_1_mint"),
            token_0_program=read_pubkey("token_0_program"),
            token_1_program=read_pubkey("token_1_program"),
            observation_key=read_pubkey("observation_key"),
            mint_0_decimals=data[POOL_STATE_OFFSETS["mint_0_decimals"]],
            mint_1_decimals=data[POOL_STATE_OFFSETS["mint_1_decimals"]],
        )

    @property
    def authority(self) -> Pubkey:
        authority, _ = Pubkey.find_program_address([AUTHORITY_SEED], CPMM_PROGRAM)
        return authority

    def side_of(self, mint: Pubkey) -> int:
        """Return 0 or 1 for the pool side holding `mint`."""
        if mint == self.token_0_mint:
            return 0
        if mint == self.token_1_mint:
            return 1
        raise ConfigError(f"Mint {mint} is not traded by pool {self.pool_id}")

    def vault(self, side: int) -> Pubkey:
        return self.token_0_vault if side == 0 else self.token_1_vault

    def mint(self, side: int) -> Pubkey:
        return self.token_0_mint if side == 0 else self.token_1_mint

    def token_program(self, side: int) -> Pubkey:
        return self.token_0_program if side == 0 else self.token_1_program

    def validate_pair(self, target_mint: Pubkey) -> None:
        """Require the pool to pair `target_mint` against wrapped SOL."""
        target_side = self.side_of(target_mint)
        if self.mint(1 - target_side) != NATIVE_MINT:
            raise ConfigError(
                f"Pool {self.pool_id} pairs {target_mint} with {self.mint(1 - target_side)}, not WSOL"
            )

    def swap_base_input_ix(
        self,
        payer: Pubkey,
        input_mint: Pubkey,
        input_account: Pubkey,
        output_account: Pubkey,
        amount_in: int,
        minimum_amount_out: int,
    ) -> Instruction:
        """Build swap_base_input: spend exactly amount_in of input_mint."""
        input_side = self.side_of(input_mint)
        output_side = 1 - input_side

        data = SWAP_BASE_INPUT_DISCRIMINATOR + struct.pack('<QQ', amount_in, minimum_amount_out)

        accounts = [
            AccountMeta(payer, is_signer=True, is_writable=False),
            AccountMeta(self.authority, is_signer=False, is_writable=False),
            AccountMeta(self.amm_config, is_signer=False, is_writable=False),
            AccountMeta(self.pool_id, is_signer=False, is_writable=True),
            AccountMeta(input_account, is_signer=False, is_writable=True),
            AccountMeta(output_account, is_signer=False, is_writable=True),
            AccountMeta(self.vault(input_side), is_signer=False, is_writable=True),
            AccountMeta(self.vault(output_side), is_signer=False, is_writable=True),
            AccountMeta(self.token_program(input_side), is_signer=False, is_writable=False),
            AccountMeta(self.token_program(output_side), is_signer=False, is_writable=False),
            AccountMeta(self.mint(input_side), is_signer=False, is_writable=False),
            AccountMeta(self.mint(output_side), is_signer=False, is_writable=False),
            AccountMeta(self.observation_key, is_signer=False, is_writable=True),
        ]

        return Instruction(CPMM_PROGRAM, data, accounts)


# SPL token helpers

def get_ata(owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM) -> Pubkey:
    """Derive the Associated Token Account address."""
    seeds = [bytes(owner), bytes(token_program), bytes(mint)]
    ata, _ = Pubkey.find_program_address(seeds, ATA_PROGRAM)
    return ata


def create_ata_idempotent_ix(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM,
) -> Instruction:
    """Build createAssociatedTokenAccountIdempotent."""
    ata = get_ata(owner, mint, token_program)
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(ata, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(token_program, is_signer=False, is_writable=False),
    ]
    return Instruction(ATA_PROGRAM, bytes([ATA_IX_CREATE_IDEMPOTENT]), accounts)


def sync_native_ix(token_account: Pubkey) -> Instruction:
    """Update a WSOL account's token balance after a lamport transfer."""
    accounts = [AccountMeta(token_account, is_signer=False, is_writable=True)]
    return Instruction(TOKEN_PROGRAM, bytes([TOKEN_IX_SYNC_NATIVE]), accounts)


def close_account_ix(
    account: Pubkey,
    dest: Pubkey,
    owner: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM,
) -> Instruction:
    """Close a token account, sending its lamports to dest."""
    accounts = [
        AccountMeta(account, is_signer=False, is_writable=True),
        AccountMeta(dest, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
    ]
    return Instruction(token_program, bytes([TOKEN_IX_CLOSE_ACCOUNT]), accounts)


def wrap_sol_ixs(owner: Pubkey, lamports: int) -> List[Instruction]:
    """Create the WSOL account, fund it with lamports and sync."""
    wsol_account = get_ata(owner, NATIVE_MINT)
    return [
        create_ata_idempotent_ix(owner, owner, NATIVE_MINT),
        transfer(TransferParams(from_pubkey=owner, to_pubkey=wsol_account, lamports=lamports)),
        sync_native_ix(wsol_account),
    ]


def unwrap_sol_ix(owner: Pubkey) -> Instruction:
    """Close the WSOL account, returning its SOL to the owner."""
    return close_account_ix(get_ata(owner, NATIVE_MINT), owner, owner)
