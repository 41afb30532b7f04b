"""
Ed25519 signatures over oracle price quotes.

The oracle identity stored in the global config is the hex-encoded 32-byte
Ed25519 verify key. A quote is signed over

    keccak(inventory_hash || price_le_u64 || timestamp_le_i64)
"""

import nacl.exceptions
import nacl.signing

from Loot_Ledger.loot_shared import config
from Loot_Ledger.loot_shared.errors import InvalidSignatureError
from Loot_Ledger.loot_shared.hash_tree import keccak256


def price_message(inventory_hash: bytes, price: int, timestamp: int) -> bytes:
    data = (
        inventory_hash
        + price.to_bytes(8, "little")
        + timestamp.to_bytes(8, "little", signed=True)
    )
    return keccak256(data)


def oracle_identity(signing_key: nacl.signing.SigningKey) -> str:
    return bytes(signing_key.verify_key).hex()


def sign_price(signing_key: nacl.signing.SigningKey, inventory_hash: bytes,
               price: int, timestamp: int) -> bytes:
    """Oracle side: produce the 64-byte signature for a quote."""
    return signing_key.sign(price_message(inventory_hash, price, timestamp)).signature


def verify_oracle_signature(message: bytes, signature: bytes, oracle: str) -> None:
    if len(signature) != config.ED25519_SIG_SIZE:
        raise InvalidSignatureError(f"expected {config.ED25519_SIG_SIZE} bytes, got {len(signature)}")
    if signature == bytes(config.ED25519_SIG_SIZE):
        raise InvalidSignatureError("signature is all zero")

    try:
        verify_key = nacl.signing.VerifyKey(bytes.fromhex(oracle))
    except (ValueError, TypeError, nacl.exceptions.CryptoError):
        raise InvalidSignatureError(f"oracle identity {oracle!r} is not an Ed25519 key")

    try:
        verify_key.verify(message, signature)
    except nacl.exceptions.BadSignatureError:
        raise InvalidSignatureError("signature does not match oracle key")
