"""
Hash families for the probabilistic filters.

Both BloomFilter and CountMinSketch need k "independent" hash values per
item. Two families are supported and the one in use is recorded in the
reserved word of each binary header, so a reader always probes the same
positions the writer set:

    LEGACY (tag 0)
        Polynomial rolling hash over UTF-16 code units, reseeded per slot:
            h = seed; h = int32(h * 31 + unit); abs(h) % modulus
        Default for newly built filters. Readers that ignore the reserved
        word always look items up with this family. Slots of same-length strings
        differ by a constant stride, which inflates the false-positive rate
        above the configured target.

    DOUBLE (tag 1)
        Kirsch-Mitzenmacher double hashing over a 128-bit BLAKE2b digest:
            g_i = (h1 + i * h2) % modulus,  h2 forced odd
        Opt-in only (`--hash-family double`); such filters are unreadable by
        readers that ignore the reserved word.
"""

from __future__ import annotations

import hashlib
import struct
from enum import IntEnum
from typing import List, Tuple

MASK32 = 0xFFFFFFFF
MASK64 = 0xFFFFFFFFFFFFFFFF


class HashFamily(IntEnum):
    LEGACY = 0
    DOUBLE = 1


def hash_family_from_name(name: str) -> HashFamily:
    """Resolve a config name ("legacy" / "double") to a HashFamily."""
    try:
        return HashFamily[name.strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown hash family: {name!r}") from None


def rolling_hash(item: str, seed: int) -> int:
    """Seeded 31-multiplier rolling hash with 32-bit signed wraparound, made non-negative."""
    h = seed
    for (unit,) in struct.iter_unpack("<H", item.encode("utf-16-le")):
        h = (h * 31 + unit) & MASK32
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def double_hash_pair(item: str) -> Tuple[int, int]:
    digest = hashlib.blake2b(item.encode("utf-8"), digest_size=16).digest()
    h1, h2 = struct.unpack("<QQ", digest)
    return h1, h2 | 1


def positions(item: str, count: int, modulus: int, family: HashFamily) -> List[int]:
    """Return `count` slot indexes in [0, modulus) for `item`."""
    if family == HashFamily.LEGACY:
        return [rolling_hash(item, i) % modulus for i in range(count)]
    h1, h2 = double_hash_pair(item)
    return [((h1 + i * h2) & MASK64) % modulus for i in range(count)]
