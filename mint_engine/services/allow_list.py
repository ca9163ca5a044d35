# mint_engine/services/allow_list.py
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from solders.pubkey import Pubkey

from mint_engine.core.errors import NotAllowlisted, ValidationError


def normalize_address(address: str) -> bytes:
    """
    Canonical 32-byte form of a Solana address. Raises ValueError if malformed.
    """
    try:
        return bytes(Pubkey.from_string(address.strip()))
    except Exception as e:
        raise ValueError(f"Invalid Solana address: {address!r}") from e


def canonical_address(address: str) -> str:
    return str(Pubkey.from_bytes(normalize_address(address)))


def _h(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def leaf_hash(address: str) -> bytes:
    return _h(normalize_address(address))


def _hash_pair(a: bytes, b: bytes) -> bytes:
    # sorted pairs: verification needs no left/right flags
    return _h(a + b) if a <= b else _h(b + a)


@dataclass(frozen=True)
class AllowListCommitment:
    root: str                                  # hex
    proofs: Dict[str, List[str]] = field(default_factory=dict)  # canonical address -> hex proof

    @property
    def size(self) -> int:
        return len(self.proofs)


def _levels(leaves: List[bytes]) -> List[List[bytes]]:
    levels = [leaves]
    while len(levels[-1]) > 1:
        current = levels[-1]
        nxt = []
        for i in range(0, len(current), 2):
            if i + 1 < len(current):
                nxt.append(_hash_pair(current[i], current[i + 1]))
            else:
                nxt.append(current[i])  # odd node promoted unchanged
        levels.append(nxt)
    return levels


def _proof_at(levels: List[List[bytes]], index: int) -> List[bytes]:
    proof = []
    for level in levels[:-1]:
        sibling = index ^ 1
        if sibling < len(level):
            proof.append(level[sibling])
        index //= 2
    return proof


def _canonical_leaves(wallets: Iterable[str]) -> List[tuple[str, bytes]]:
    seen: Dict[bytes, str] = {}
    for w in wallets:
        try:
            raw = normalize_address(w)
        except (ValueError, AttributeError):
            raise ValidationError(f"Invalid wallet address in allow list: {w!r}")
        seen.setdefault(raw, str(Pubkey.from_bytes(raw)))
    if not seen:
        raise ValidationError("Allow list must contain at least one wallet.")
    # deterministic leaf order independent of input order
    ordered = sorted(seen.items(), key=lambda kv: kv[0])
    return [(addr, _h(raw)) for raw, addr in ordered]


def build_commitment(wallets: Iterable[str]) -> AllowListCommitment:
    """
    Merkle commitment over an allow list.

    Leaves are SHA-256(pubkey bytes); parents SHA-256 of the byte-sorted pair.
    Returns the root and a proof for every (deduplicated) member.
    """
    pairs = _canonical_leaves(wallets)
    levels = _levels([leaf for _, leaf in pairs])
    proofs = {
        addr: [p.hex() for p in _proof_at(levels, i)]
        for i, (addr, _) in enumerate(pairs)
    }
    return AllowListCommitment(root=levels[-1][0].hex(), proofs=proofs)


def proof_for(wallets: Iterable[str], address: str) -> List[str]:
    commitment = build_commitment(wallets)
    try:
        key = canonical_address(address)
    except (ValueError, AttributeError):
        raise ValidationError("Invalid wallet address.")
    if key not in commitment.proofs:
        raise NotAllowlisted("Wallet is not on the allow list for this phase.")
    return commitment.proofs[key]


def verify(address: str, proof: Optional[Sequence[str]], root: Optional[str]) -> bool:
    """
    Recompute the root from the wallet's leaf upward and compare byte-for-byte.
    Malformed input verifies False.
    """
    if proof is None or not root:
        return False
    try:
        node = leaf_hash(address)
        for sibling in proof:
            node = _hash_pair(node, bytes.fromhex(sibling))
        return node == bytes.fromhex(root)
    except (ValueError, TypeError, AttributeError):
        return False
