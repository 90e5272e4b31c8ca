"""
Count-min sketch for approximate per-entity frequency.

Binary layout mirrors the bloom filter: a 24-byte little-endian header
(magic 0x434D5348 "CMSH", version 1, width, depth, total_count, hash family)
followed by width * depth uint32 counters, row-major.
"""

from __future__ import annotations

import math
import struct
from typing import Iterable, List, Tuple, Union

import numpy as np

from .errors import CorruptData
from .hashing import HashFamily, positions

MAGIC_NUMBER = 0x434D5348
FORMAT_VERSION = 1
HEADER = struct.Struct("<6I")
HEADER_SIZE = HEADER.size
MAX_COUNT = 0xFFFFFFFF


def optimal_dimensions(epsilon: float, delta: float) -> Tuple[int, int]:
    """(width, depth) for error bound epsilon with failure probability delta."""
    if epsilon <= 0 or not 0 < delta < 1:
        raise ValueError("epsilon must be > 0 and delta in (0, 1)")
    return int(math.ceil(math.e / epsilon)), int(math.ceil(math.log(1 / delta)))


class CountMinSketch:
    """Fixed-size frequency table. estimate() never undercounts."""

    def __init__(
        self,
        width: int = 10000,
        depth: int = 5,
        hash_family: HashFamily = HashFamily.LEGACY,
    ):
        if width <= 0 or depth <= 0:
            raise ValueError(f"width and depth must be positive, got {width}x{depth}")
        self.width = width
        self.depth = depth
        self.hash_family = HashFamily(hash_family)
        self.table = np.zeros((depth, width), dtype=np.uint32)
        self.total_count = 0

    def _columns(self, item: str) -> List[int]:
        # one column per row
        return positions(item, self.depth, self.width, self.hash_family)

    def add(self, item: str, count: int = 1) -> None:
        if count < 0:
            raise ValueError("count must be non-negative")
        for row, col in enumerate(self._columns(item)):
            self.table[row, col] = min(int(self.table[row, col]) + count, MAX_COUNT)
        self.total_count += count

    def estimate(self, item: str) -> int:
        return min(int(self.table[row, col]) for row, col in enumerate(self._columns(item)))

    def all_estimates(self, item: str) -> List[int]:
        """Per-row counters for item; the estimate is their minimum."""
        return [int(self.table[row, col]) for row, col in enumerate(self._columns(item))]

    def merge(self, other: "CountMinSketch") -> "CountMinSketch":
        if (
            self.width != other.width
            or self.depth != other.depth
            or self.hash_family != other.hash_family
        ):
            raise ValueError("Cannot merge Count-Min Sketches with different dimensions")
        merged = CountMinSketch(self.width, self.depth, self.hash_family)
        summed = self.table.astype(np.uint64) + other.table.astype(np.uint64)
        merged.table = np.minimum(summed, MAX_COUNT).astype(np.uint32)
        merged.total_count = self.total_count + other.total_count
        return merged

    def error_bound(self) -> float:
        """Max overestimate with probability 1 - e^-depth."""
        return self.total_count / self.width

    def top_items(self, items: Iterable[str], k: int) -> List[Tuple[str, int]]:
        scored = [(item, self.estimate(item)) for item in items]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:k]

    def clear(self) -> None:
        self.table.fill(0)
        self.total_count = 0

    @property
    def size_bytes(self) -> int:
        return HEADER_SIZE + self.width * self.depth * 4

    def metadata(self) -> dict:
        return {
            "magic": MAGIC_NUMBER,
            "version": FORMAT_VERSION,
            "width": self.width,
            "depth": self.depth,
            "total_count": self.total_count,
        }

    def to_bytes(self) -> bytes:
        header = HEADER.pack(
            MAGIC_NUMBER,
            FORMAT_VERSION,
            self.width,
            self.depth,
            min(self.total_count, MAX_COUNT),
            int(self.hash_family),
        )
        return header + self.table.astype("<u4").tobytes()

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, memoryview]) -> "CountMinSketch":
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise CorruptData(f"Count-Min Sketch too short: {len(data)} bytes")
        magic, version, width, depth, total_count, reserved = HEADER.unpack_from(data)
        if magic != MAGIC_NUMBER:
            raise CorruptData(f"Invalid Count-Min Sketch magic number: 0x{magic:x}")
        if version != FORMAT_VERSION:
            raise CorruptData(f"Unsupported Count-Min Sketch version: {version}")
        try:
            family = HashFamily(reserved)
        except ValueError:
            raise CorruptData(f"Unknown Count-Min Sketch hash family: {reserved}") from None
        if width == 0 or depth == 0:
            raise CorruptData("Count-Min Sketch header has zero dimensions")
        cells = width * depth
        if len(data) < HEADER_SIZE + cells * 4:
            raise CorruptData(
                f"Count-Min Sketch truncated: need {HEADER_SIZE + cells * 4} bytes, got {len(data)}"
            )
        sketch = cls(width, depth, family)
        table = np.frombuffer(data, dtype="<u4", count=cells, offset=HEADER_SIZE)
        sketch.table = table.astype(np.uint32).reshape(depth, width)
        sketch.total_count = total_count
        return sketch

    def __repr__(self) -> str:
        return (
            f"CountMinSketch(width={self.width}, depth={self.depth}, "
            f"total_count={self.total_count}, hash_family={self.hash_family.name})"
        )


def create_count_min_sketch(
    items: Iterable[str], width: int = 10000, depth: int = 5
) -> CountMinSketch:
    sketch = CountMinSketch(width, depth)
    for item in items:
        sketch.add(item)
    return sketch


def estimate_from_sketch(data: bytes, item: str) -> int:
    return CountMinSketch.from_bytes(data).estimate(item)
