"""Growth and shrink parameters for open-addressing hash tables, plus
big-endian integer serialization helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO


def read_bigendian(stream: BinaryIO, length: int) -> int:
    """Read an unsigned big-endian integer of ``length`` bytes from ``stream``.

    Raises EOFError if the stream ends before ``length`` bytes were read.
    """
    if length < 0:
        raise ValueError("length must not be negative")
    data = stream.read(length) if length else b""
    if data is None or len(data) != length:
        raise EOFError(f"expected {length} bytes, stream ended early")
    return int.from_bytes(data, "big")


def write_bigendian(stream: BinaryIO, value: int, length: int, width: int = 8) -> None:
    """Write ``value`` as an unsigned big-endian integer of ``length`` bytes.

    ``width`` is the size in bytes of the integer type ``value`` belongs to.
    Leading bytes beyond ``width`` are written as zero; when ``length`` is
    smaller than ``width`` only the low ``length`` bytes are written.
    """
    if length < 0:
        raise ValueError("length must not be negative")
    if width < 1:
        raise ValueError("width must be at least 1")
    if value < 0:
        raise ValueError("serializing an integer requires an unsigned value")
    if value >= 1 << (8 * width):
        raise ValueError(f"value does not fit in {width} bytes")
    out = bytes(
        0 if width <= length - 1 - i else (value >> ((length - 1 - i) * 8)) & 0xFF
        for i in range(length)
    )
    written = stream.write(out)
    if written is not None and written != length:
        raise OSError(f"wrote {written} of {length} bytes")


@dataclass
class HashtableSettings:
    """Parameters controlling when a hash table grows or shrinks."""

    enlarge_factor: float
    shrink_factor: float
    min_bucket_count: int = 4
    size_bits: int = 64
    enlarge_threshold: int = 0
    shrink_threshold: int = 0
    consider_shrink: bool = False
    use_empty: bool = False
    use_deleted: bool = False
    num_ht_copies: int = 0

    def enlarge_size(self, buckets: int) -> int:
        """Element count at which a table of ``buckets`` buckets must grow."""
        return int(buckets * self.enlarge_factor)

    def shrink_size(self, buckets: int) -> int:
        """Element count below which a table of ``buckets`` buckets may shrink."""
        return int(buckets * self.shrink_factor)

    def reset_thresholds(self, buckets: int) -> None:
        """Recompute both thresholds for a table of ``buckets`` buckets."""
        self.enlarge_threshold = self.enlarge_size(buckets)
        self.shrink_threshold = self.shrink_size(buckets)
        self.consider_shrink = False

    def set_resizing_parameters(self, shrink: float, grow: float) -> None:
        """Set shrink and grow factors; shrink is capped at half of grow.

        Call ``reset_thresholds`` afterwards.
        """
        if shrink < 0.0:
            raise ValueError("shrink factor must not be negative")
        if grow > 1.0:
            raise ValueError("grow factor must not exceed 1.0")
        if shrink > grow / 2.0:
            shrink = grow / 2.0
        self.shrink_factor = shrink
        self.enlarge_factor = grow

    def min_buckets(self, num_elements: int, min_buckets_wanted: int) -> int:
        """Smallest power-of-two bucket count that holds ``num_elements`` uncrowded.

        Raises OverflowError if the count would not fit the size type.
        """
        limit = 1 << self.size_bits
        size = self.min_bucket_count
        while size < min_buckets_wanted or num_elements >= int(size * self.enlarge_factor):
            if size * 2 >= limit:
                raise OverflowError("resize overflow")
            size *= 2
        return size