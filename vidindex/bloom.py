"""
Bloom filter used to prune sources before their indexes are fetched.

Binary layout (all fields little-endian uint32):

    0   magic       0x424C4F4D ("BLOM")
    4   version     1
    8   size_bits
    12  num_hashes
    16  item_count
    20  reserved    hash family tag (see vidindex.hashing)
    24  bit array, ceil(size_bits / 8) bytes, bit i at byte i >> 3, bit i & 7
"""

from __future__ import annotations

import math
import struct
from typing import Iterable, Optional, Union

import numpy as np

from .errors import CorruptData
from .hashing import HashFamily, positions

MAGIC_NUMBER = 0x424C4F4D
FORMAT_VERSION = 1
HEADER = struct.Struct("<6I")
HEADER_SIZE = HEADER.size  # 24
MAX_U32 = 0xFFFFFFFF


def optimal_size(n: int, p: float) -> int:
    return int(math.ceil(-n * math.log(p) / (math.log(2) ** 2)))


def optimal_hashes(m: int, n: int) -> int:
    return max(1, int(math.ceil((m / n) * math.log(2))))


class BloomFilter:
    """Fixed-size probabilistic membership set. Never reports a false negative."""

    def __init__(
        self,
        expected_items: int,
        false_positive_rate: float = 0.01,
        hash_family: HashFamily = HashFamily.LEGACY,
    ):
        if expected_items <= 0:
            raise ValueError(f"expected_items must be positive, got {expected_items}")
        if not 0.0 < false_positive_rate < 1.0:
            raise ValueError(
                f"false_positive_rate must be in (0, 1), got {false_positive_rate}"
            )
        self.size_bits = optimal_size(expected_items, false_positive_rate)
        self.num_hashes = optimal_hashes(self.size_bits, expected_items)
        self.hash_family = HashFamily(hash_family)
        self.item_count = 0
        self.bits = np.zeros((self.size_bits + 7) // 8, dtype=np.uint8)

    @classmethod
    def with_dimensions(
        cls,
        size_bits: int,
        num_hashes: int,
        item_count: int = 0,
        bits: Optional[np.ndarray] = None,
        hash_family: HashFamily = HashFamily.LEGACY,
    ) -> "BloomFilter":
        """Build a filter with explicit dimensions (deserialization, merge)."""
        if size_bits <= 0 or num_hashes <= 0:
            raise ValueError("size_bits and num_hashes must be positive")
        bf = cls.__new__(cls)
        bf.size_bits = size_bits
        bf.num_hashes = num_hashes
        bf.hash_family = HashFamily(hash_family)
        bf.item_count = item_count
        nbytes = (size_bits + 7) // 8
        if bits is None:
            bf.bits = np.zeros(nbytes, dtype=np.uint8)
        else:
            bf.bits = np.array(bits, dtype=np.uint8, copy=True)
            if bf.bits.shape != (nbytes,):
                raise ValueError(f"bit array must be {nbytes} bytes, got {bf.bits.size}")
        return bf

    def _positions(self, item: str):
        return positions(item, self.num_hashes, self.size_bits, self.hash_family)

    def add(self, item: str) -> None:
        for idx in self._positions(item):
            self.bits[idx >> 3] |= 1 << (idx & 7)
        self.item_count += 1

    def might_contain(self, item: str) -> bool:
        """False means the item was never added; True may be a false positive."""
        for idx in self._positions(item):
            if not (self.bits[idx >> 3] >> (idx & 7)) & 1:
                return False
        return True

    def __contains__(self, item: str) -> bool:
        return self.might_contain(item)

    def estimated_false_positive_rate(self) -> float:
        k = self.num_hashes
        return (1.0 - math.exp(-k * self.item_count / self.size_bits)) ** k

    def merge(self, other: "BloomFilter") -> "BloomFilter":
        """Union of two filters with identical dimensions.

        item_count is the sum of both inputs, so items present in both are
        counted twice; it tracks load, not exact cardinality.
        """
        if (
            self.size_bits != other.size_bits
            or self.num_hashes != other.num_hashes
            or self.hash_family != other.hash_family
        ):
            raise ValueError("Cannot merge bloom filters with different parameters")
        return BloomFilter.with_dimensions(
            self.size_bits,
            self.num_hashes,
            item_count=self.item_count + other.item_count,
            bits=np.bitwise_or(self.bits, other.bits),
            hash_family=self.hash_family,
        )

    def clear(self) -> None:
        self.bits.fill(0)
        self.item_count = 0

    @property
    def size_bytes(self) -> int:
        return HEADER_SIZE + int(self.bits.size)

    def metadata(self) -> dict:
        return {
            "magic": MAGIC_NUMBER,
            "version": FORMAT_VERSION,
            "size_bits": self.size_bits,
            "num_hashes": self.num_hashes,
            "num_items": self.item_count,
        }

    def to_bytes(self) -> bytes:
        header = HEADER.pack(
            MAGIC_NUMBER,
            FORMAT_VERSION,
            self.size_bits,
            self.num_hashes,
            min(self.item_count, MAX_U32),
            int(self.hash_family),
        )
        return header + self.bits.tobytes()

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, memoryview]) -> "BloomFilter":
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise CorruptData(f"Bloom filter too short: {len(data)} bytes")
        magic, version, size_bits, num_hashes, item_count, reserved = HEADER.unpack_from(data)
        if magic != MAGIC_NUMBER:
            raise CorruptData(f"Invalid bloom filter magic number: 0x{magic:x}")
        if version != FORMAT_VERSION:
            raise CorruptData(f"Unsupported bloom filter version: {version}")
        try:
            family = HashFamily(reserved)
        except ValueError:
            raise CorruptData(f"Unknown bloom filter hash family: {reserved}") from None
        if size_bits == 0 or num_hashes == 0:
            raise CorruptData("Bloom filter header has zero dimensions")
        nbytes = (size_bits + 7) // 8
        if len(data) < HEADER_SIZE + nbytes:
            raise CorruptData(
                f"Bloom filter truncated: need {HEADER_SIZE + nbytes} bytes, got {len(data)}"
            )
        bits = np.frombuffer(data, dtype=np.uint8, count=nbytes, offset=HEADER_SIZE)
        return cls.with_dimensions(size_bits, num_hashes, item_count, bits, family)

    def __repr__(self) -> str:
        return (
            f"BloomFilter(size_bits={self.size_bits}, num_hashes={self.num_hashes}, "
            f"item_count={self.item_count}, hash_family={self.hash_family.name})"
        )


def create_bloom_filter(
    items: Iterable[str],
    fp_rate: float = 0.01,
    hash_family: HashFamily = HashFamily.LEGACY,
) -> BloomFilter:
    """Build a filter sized for exactly the given items."""
    items = list(items)
    bf = BloomFilter(max(1, len(items)), fp_rate, hash_family)
    for item in items:
        bf.add(item)
    return bf


def check_bloom_filter(data: bytes, item: str) -> bool:
    """Deserialize a stored filter and test one item."""
    return BloomFilter.from_bytes(data).might_contain(item)
