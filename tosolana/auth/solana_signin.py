"""
Solana signMessage verification for session proofs.

Wallet adapters disagree on signature encoding: Phantom and Solflare return
base58, some mobile wallets return base64. Both are accepted; anything that
does not decode to exactly 64 bytes is rejected before touching ed25519.
"""

from __future__ import annotations

import base64
import binascii
from itertools import takewhile

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_DIGITS = {char: value for value, char in enumerate(_ALPHABET)}

PUBLIC_KEY_BYTES = 32
SIGNATURE_BYTES = 64


def base58_encode(data: bytes) -> str:
    zeros = sum(1 for _ in takewhile(lambda byte: byte == 0, data))
    num = int.from_bytes(data, "big")
    digits = []
    while num:
        num, rem = divmod(num, 58)
        digits.append(_ALPHABET[rem])
    return "1" * zeros + "".join(reversed(digits))


def base58_decode(value: str) -> bytes:
    zeros = sum(1 for _ in takewhile(lambda char: char == "1", value))
    num = 0
    for char in value:
        digit = _DIGITS.get(char)
        if digit is None:
            raise ValueError(f"Invalid base58 character: {char!r}")
        num = num * 58 + digit
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * zeros + body


def solana_public_key(address: str) -> bytes:
    """Decode a wallet address into its ed25519 public key bytes."""
    key = base58_decode(address.strip())
    if len(key) != PUBLIC_KEY_BYTES:
        raise ValueError("Solana address is not a 32-byte public key")
    return key


def decode_signature(signature: str) -> bytes:
    """Decode a base58 or base64 signMessage signature into 64 raw bytes."""
    text = signature.strip()
    if not text:
        raise ValueError("Signature is empty")

    candidates = []
    if all(char in _DIGITS for char in text):
        candidates.append(lambda: base58_decode(text))
    candidates.append(lambda: base64.b64decode(text, validate=True))
    candidates.append(lambda: base64.urlsafe_b64decode(text + "=" * (-len(text) % 4)))

    for decode in candidates:
        try:
            raw = decode()
        except (ValueError, binascii.Error):
            continue
        if len(raw) == SIGNATURE_BYTES:
            return raw
    raise ValueError("Signature is not a 64-byte base58 or base64 value")


def verify_solana_signature(message: str, signature: str, address: str) -> None:
    """
    Check an ed25519 signature over the UTF-8 message text.

    Raises:
        ValueError: malformed key or signature, or the signature does not verify
    """
    verify_key = VerifyKey(solana_public_key(address))
    try:
        verify_key.verify(message.encode("utf-8"), decode_signature(signature))
    except BadSignatureError as exc:
        raise ValueError("Solana signature does not match the wallet") from exc
