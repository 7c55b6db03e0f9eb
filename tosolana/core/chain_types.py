"""
Chain identification types and utilities.

A source chain is identified either by an EVM integer chain id (1, 8453, ...)
or by a symbolic tag for non-EVM ecosystems ("bitcoin", "cosmoshub-4", "ton").
Every chain belongs to one ChainKind, which drives signing and finality rules.
"""

from __future__ import annotations

import re
from enum import Enum
from functools import lru_cache
from typing import Optional, Union

ChainId = Union[int, str]


class ChainKind(str, Enum):
    EVM = "evm"
    SOLANA = "solana"
    BITCOIN = "bitcoin"
    COSMOS = "cosmos"
    TON = "ton"


# Kinds a bridge transfer may originate from
SOURCE_CHAIN_KINDS = frozenset({ChainKind.EVM, ChainKind.BITCOIN, ChainKind.COSMOS, ChainKind.TON})

# Solana system program id, used by several providers as "native SOL"
SOL_NATIVE_ADDRESS = "11111111111111111111111111111111"
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_TOKEN_IDS = frozenset({"SOL", SOL_NATIVE_ADDRESS, WRAPPED_SOL_MINT})

EVM_NATIVE_PLACEHOLDER = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

COSMOS_CHAIN_IDS = frozenset({"cosmoshub-4", "osmosis-1", "injective-1"})

_BASE58_ALPHABET = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")
_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_EVM_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def infer_chain_kind(chain_id: ChainId) -> Optional[ChainKind]:
    """Best-effort chain kind for a source chain id; None when unknown."""
    if isinstance(chain_id, int) and not isinstance(chain_id, bool):
        return ChainKind.EVM
    tag = str(chain_id).strip().lower()
    if tag.isdigit():
        return ChainKind.EVM
    if tag in ("bitcoin", "btc"):
        return ChainKind.BITCOIN
    if tag == "ton":
        return ChainKind.TON
    if tag in ("solana", "sol"):
        return ChainKind.SOLANA
    if tag in COSMOS_CHAIN_IDS or tag == "cosmos":
        return ChainKind.COSMOS
    return None


def is_sol_token(token: str) -> bool:
    return token in SOL_TOKEN_IDS


def is_valid_evm_address(address: str) -> bool:
    return bool(address) and bool(_EVM_ADDRESS_RE.fullmatch(address))


def is_valid_evm_tx_hash(tx_hash: str) -> bool:
    return bool(tx_hash) and bool(_EVM_TX_HASH_RE.fullmatch(tx_hash))


@lru_cache(maxsize=256)
def is_valid_solana_address(address: str) -> bool:
    if not address:
        return False
    length = len(address)
    if length < 32 or length > 44:
        return False
    return all(ch in _BASE58_ALPHABET for ch in address)
