"""
Wallet signature schemes for session authorization.

Each scheme knows which session wallet must sign and how to check the
signature. Verification raises ValueError; the caller turns that into a
generic AuthError.
"""

from abc import ABC, abstractmethod
from typing import Dict

from eth_account import Account
from eth_account.messages import encode_defunct

from ..core.chain_types import ChainKind, is_valid_evm_address, is_valid_solana_address
from ..core.session.models import Session
from .solana_signin import solana_public_key, verify_solana_signature


class SignatureScheme(ABC):
    name: str

    @abstractmethod
    def signer_address(self, session: Session) -> str:
        """Normalized address of the wallet expected to sign."""

    @abstractmethod
    def verify(self, message: str, signature: str, address: str) -> None:
        """Raise ValueError unless ``signature`` over ``message`` belongs to ``address``."""


class EvmPersonalSignScheme(SignatureScheme):
    """EIP-191 personal_sign by the EVM source wallet."""

    name = "evm"

    def signer_address(self, session: Session) -> str:
        address = session.source_address.strip()
        if not is_valid_evm_address(address):
            raise ValueError("Source wallet is not an EVM address")
        return address.lower()

    def verify(self, message: str, signature: str, address: str) -> None:
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as exc:
            # eth-account raises a mix of ValueError/BadSignature/binascii errors
            raise ValueError(f"Malformed EVM signature: {exc}") from exc
        if recovered.lower() != address.lower():
            raise ValueError("Recovered signer does not match the session wallet")


class SolanaSignMessageScheme(SignatureScheme):
    """ed25519 signMessage by the destination Solana wallet.

    Used when the source wallet cannot produce a portable message signature
    (Bitcoin, Cosmos, TON sources).
    """

    name = "solana"

    def signer_address(self, session: Session) -> str:
        address = session.solana_address.strip()
        if not is_valid_solana_address(address):
            raise ValueError("Destination wallet is not a Solana address")
        solana_public_key(address)
        return address

    def verify(self, message: str, signature: str, address: str) -> None:
        verify_solana_signature(message, signature, address)


SCHEMES: Dict[str, SignatureScheme] = {
    scheme.name: scheme for scheme in (EvmPersonalSignScheme(), SolanaSignMessageScheme())
}


def scheme_for_session(session: Session) -> SignatureScheme:
    if session.execution_context.source_chain_kind == ChainKind.EVM:
        return SCHEMES["evm"]
    return SCHEMES["solana"]
