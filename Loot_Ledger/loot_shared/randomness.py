"""
Randomness request/fulfil helpers for box reveals.

Flow:
    open    → seed = subject || timestamp_le  → provider.request_randomness(seed) → request_id
    fulfil  → oracle delivers 32 random bytes for request_id (sanity-checked here)
    reveal  → derive_index(randomness, subject, batch_id, pool_size) picks the item

derive_index is a pure function of its inputs: recomputing it with the same
randomness always selects the same item.
"""

from abc import ABC, abstractmethod

from Loot_Ledger.loot_shared import config
from Loot_Ledger.loot_shared.errors import InvalidPoolSizeError, VrfNotFulfilledError
from Loot_Ledger.loot_shared.hash_tree import keccak256

_ALL_ZERO = bytes(config.HASH_SIZE)
_ALL_FF = b"\xff" * config.HASH_SIZE


def subject_bytes(subject_id: str) -> bytes:
    return subject_id.encode()


def derive_seed(subject_id: str, timestamp: int) -> bytes:
    return subject_bytes(subject_id) + timestamp.to_bytes(8, "little", signed=True)


class RandomnessProvider(ABC):
    """Anything that turns a seed into a request id the oracle later answers."""

    @abstractmethod
    def request_randomness(self, seed: bytes) -> int:
        ...


class MockRandomnessProvider(RandomnessProvider):
    """Deterministic provider: request id is the first 8 bytes of keccak(seed)."""

    def request_randomness(self, seed: bytes) -> int:
        return int.from_bytes(keccak256(seed)[:8], "little")


def validate_randomness(randomness: bytes) -> None:
    if len(randomness) != config.HASH_SIZE:
        raise VrfNotFulfilledError(f"randomness must be {config.HASH_SIZE} bytes")
    if randomness == _ALL_ZERO:
        raise VrfNotFulfilledError("randomness is all zero")
    if randomness == _ALL_FF:
        raise VrfNotFulfilledError("randomness is all 0xFF")


def is_fulfilled(randomness: bytes) -> bool:
    return randomness != _ALL_ZERO


def derive_index(randomness: bytes, subject_id: str, context_id: int, pool_size: int) -> int:
    if pool_size <= 0:
        raise InvalidPoolSizeError(pool_size)

    data = randomness + subject_bytes(subject_id) + context_id.to_bytes(8, "little")
    digest = keccak256(data)
    return int.from_bytes(digest[:8], "little") % pool_size
