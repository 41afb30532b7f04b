"""
Sorted-pair keccak-256 Merkle tree over 32-byte inventory leaves.

Every parent is keccak(min(a, b) || max(a, b)), so a proof is just the list of
sibling hashes; the verifier never needs to know whether a sibling sat on the
left or the right. An odd trailing node is paired with itself (hashed with a
copy of itself), not promoted unchanged. A self-paired node is recorded as
its own sibling, so folding the proof reproduces the duplicated hash.

    leaves:   L0   L1   L2
    level 1:  H(L0,L1)  H(L2,L2)
    root:     H(level1[0], level1[1])
"""

from web3 import Web3

from Loot_Ledger.loot_shared import config
from Loot_Ledger.loot_shared.errors import (
    InvalidMerkleProofError,
    InvalidMetadataError,
    MerkleProofTooDeepError,
)


def keccak256(data: bytes) -> bytes:
    return bytes(Web3.keccak(data))


def inventory_leaf(inventory_id: str, metadata: str) -> bytes:
    """Leaf for one snapshotted item: keccak(inventory_id || "|" || metadata)."""
    return keccak256(inventory_id.encode() + b"|" + metadata.encode())


def hash_pair(a: bytes, b: bytes) -> bytes:
    if a <= b:
        return keccak256(a + b)
    return keccak256(b + a)


def _next_level(level: list[bytes]) -> list[bytes]:
    parents = []
    for i in range(0, len(level), 2):
        left = level[i]
        right = level[i + 1] if i + 1 < len(level) else left
        parents.append(hash_pair(left, right))
    return parents


def _check_leaves(leaves: list[bytes]) -> None:
    if not leaves:
        raise InvalidMetadataError("Merkle tree needs at least one leaf")
    for leaf in leaves:
        if len(leaf) != config.HASH_SIZE:
            raise InvalidMetadataError(f"leaf must be {config.HASH_SIZE} bytes, got {len(leaf)}")


def build_root(leaves: list[bytes]) -> bytes:
    _check_leaves(leaves)

    level = list(leaves)
    while len(level) > 1:
        level = _next_level(level)
    return level[0]


def generate_proof(leaves: list[bytes], target: bytes) -> list[bytes]:
    """Sibling path from ``target`` up to the root (first occurrence of target)."""
    _check_leaves(leaves)
    try:
        index = leaves.index(target)
    except ValueError:
        raise InvalidMerkleProofError(target.hex())

    proof: list[bytes] = []
    level = list(leaves)
    while len(level) > 1:
        sibling = index + 1 if index % 2 == 0 else index - 1
        if sibling >= len(level):
            sibling = index
        proof.append(level[sibling])
        level = _next_level(level)
        index //= 2
    return proof


def proof_depth(leaf_count: int) -> int:
    """Length of every leaf proof in a tree of ``leaf_count`` leaves.

    Self-paired nodes still contribute a proof element, so all leaves sit at
    the same depth: ceil(log2(leaf_count)).
    """
    if leaf_count <= 0:
        raise InvalidMerkleProofError("empty tree")
    return (leaf_count - 1).bit_length()


def compute_root(leaf: bytes, proof: list[bytes]) -> bytes:
    computed = leaf
    for element in proof:
        computed = hash_pair(computed, element)
    return computed


def verify_proof(leaf: bytes, root: bytes, proof: list[bytes],
                 max_depth: int = config.MAX_MERKLE_PROOF_DEPTH) -> None:
    """Raise unless folding ``proof`` into ``leaf`` reproduces ``root``."""
    if len(proof) > max_depth:
        raise MerkleProofTooDeepError(len(proof), max_depth)

    if len(leaf) != config.HASH_SIZE or any(len(p) != config.HASH_SIZE for p in proof):
        raise InvalidMerkleProofError(leaf.hex())

    if compute_root(leaf, proof) != root:
        raise InvalidMerkleProofError(leaf.hex())


def is_valid_proof(leaf: bytes, root: bytes, proof: list[bytes]) -> bool:
    try:
        verify_proof(leaf, root, proof)
    except (InvalidMerkleProofError, MerkleProofTooDeepError):
        return False
    return True
