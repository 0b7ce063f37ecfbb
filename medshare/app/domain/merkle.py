"""Hash chain utilities for the grant audit ledger."""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple


@dataclass
class ChainLink:
    value: bytes
    prev_hash: Optional[bytes]

    @property
    def hash(self) -> bytes:
        hasher = hashlib.sha256()
        hasher.update(self.value)
        if self.prev_hash:
            hasher.update(self.prev_hash)
        return hasher.digest()


def canonical_bytes(data: Mapping[str, Any]) -> bytes:
    """Serialize data with deterministic ordering for hashing."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def compute_chain_hash(payload: Mapping[str, Any], prev_hash_hex: Optional[str]) -> str:
    """Return the new chain hash from payload + previous hash."""
    link = ChainLink(
        value=canonical_bytes(payload),
        prev_hash=bytes.fromhex(prev_hash_hex) if prev_hash_hex else None,
    )
    return link.hash.hex()


def verify_links(
    links: Iterable[Tuple[str, Mapping[str, Any], Optional[str], Optional[str]]],
) -> List[str]:
    """Check ``(label, payload, prev_hash, curr_hash)`` tuples in chain order.

    Returns one message per broken link; an empty list means the chain is intact.
    """
    problems: List[str] = []
    expected_prev: Optional[str] = None
    for label, payload, prev_hash, curr_hash in links:
        if prev_hash != expected_prev:
            problems.append(f"{label}: prev_hash mismatch")
        if curr_hash != compute_chain_hash(payload, prev_hash):
            problems.append(f"{label}: curr_hash mismatch")
        expected_prev = curr_hash
    return problems
