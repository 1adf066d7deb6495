# src/mintadj/crypto/digest.py
from __future__ import annotations

"""Address-set digest guard.

The digest binds a bundled adjustment dataset to a network-wide constant:

    base58( sha256( "".join(sorted(set(addresses))).encode("utf-8") ) )

Identical address sets (any order, duplicates collapsed) always give the
same digest. An empty set has no digest.
"""

import hashlib
from typing import Iterable, Optional

import base58


def compute_digest(addresses: Iterable[str]) -> Optional[str]:
    unique = {str(a) for a in addresses}
    if not unique:
        return None

    joined = "".join(sorted(unique))
    raw = hashlib.sha256(joined.encode("utf-8")).digest()
    return base58.b58encode(raw).decode("ascii")


def verify_digest(expected: Optional[str], addresses: Iterable[str]) -> bool:
    """Exact string comparison of `expected` against compute_digest(addresses).

    A missing expected value or an empty address set never verifies.
    """
    if not expected:
        return False
    actual = compute_digest(addresses)
    if actual is None:
        return False
    return actual == expected


__all__ = ["compute_digest", "verify_digest"]
