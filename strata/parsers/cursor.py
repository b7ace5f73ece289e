"""
Bounds-Checked Byte Cursor
===========================

:class:`ByteCursor` is the only component that touches the raw input
buffer.  Every read is addressed by an absolute offset and validated
against the buffer length *before* any bytes are accessed, raising
:class:`~strata.core.errors.OutOfBoundsError` instead of failing inside
:mod:`struct` or returning a short slice.

The cursor keeps no position, so a single instance can be shared by all
parsers of one decode without ordering dependencies.
"""

from __future__ import annotations

import struct
from typing import Any, Union

from strata.core.errors import OutOfBoundsError

Buffer = Union[bytes, bytearray, memoryview]


class ByteCursor:
    """Read-only, offset-addressed view over a PE image buffer.

    Usage::

        cursor = ByteCursor(raw_bytes)
        e_lfanew = cursor.read_u32(0x3C)
        name = cursor.read_cstring(name_offset)
    """

    __slots__ = ("_data",)

    def __init__(self, data: Buffer) -> None:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(
                f"expected a bytes-like buffer, got {type(data).__name__}"
            )
        self._data: bytes = bytes(data)

    def __len__(self) -> int:
        return len(self._data)

    @property
    def data(self) -> bytes:
        return self._data

    # ------------------------------------------------------------------ #
    #  Bounds checking
    # ------------------------------------------------------------------ #

    def check(self, offset: int, length: int) -> None:
        """Raise :class:`OutOfBoundsError` unless ``[offset, offset+length)`` fits."""
        if offset < 0 or length < 0 or offset + length > len(self._data):
            raise OutOfBoundsError(offset, length, len(self._data))

    def in_bounds(self, offset: int, length: int) -> bool:
        return 0 <= offset and 0 <= length and offset + length <= len(self._data)

    def remaining(self, offset: int) -> int:
        """Number of bytes from *offset* to the end of the buffer (never negative)."""
        if offset < 0:
            return 0
        return max(0, len(self._data) - offset)

    # ------------------------------------------------------------------ #
    #  Fixed-width reads
    # ------------------------------------------------------------------ #

    def unpack(self, fmt: str, offset: int) -> tuple[Any, ...]:
        """Unpack a :mod:`struct` format at *offset*.

        *fmt* should carry an explicit byte-order prefix (``"<"``).
        """
        self.check(offset, struct.calcsize(fmt))
        return struct.unpack_from(fmt, self._data, offset)

    def read_u8(self, offset: int) -> int:
        self.check(offset, 1)
        return self._data[offset]

    def read_u16(self, offset: int) -> int:
        return self.unpack("<H", offset)[0]

    def read_u32(self, offset: int) -> int:
        return self.unpack("<I", offset)[0]

    def read_u64(self, offset: int) -> int:
        return self.unpack("<Q", offset)[0]

    def read_uint(self, offset: int, width: int) -> int:
        """Read a little-endian unsigned integer of 4 or 8 bytes."""
        if width == 8:
            return self.read_u64(offset)
        if width == 4:
            return self.read_u32(offset)
        raise ValueError(f"unsupported integer width: {width}")

    # ------------------------------------------------------------------ #
    #  Variable-length reads
    # ------------------------------------------------------------------ #

    def read_bytes(self, offset: int, length: int) -> bytes:
        self.check(offset, length)
        return self._data[offset:offset + length]

    def read_cstring(self, offset: int, encoding: str = "utf-8") -> str:
        """Read a NUL-terminated string starting at *offset*.

        The scan for the terminator stops at the end of the buffer; a string
        with no terminator inside the buffer is an out-of-bounds read.
        Undecodable bytes are replaced rather than rejected.
        """
        self.check(offset, 1)
        end = self._data.find(b"\x00", offset)
        if end == -1:
            raise OutOfBoundsError(offset, len(self._data) - offset + 1, len(self._data))
        return self._data[offset:end].decode(encoding, errors="replace")

    def suffix(self, offset: int) -> bytes:
        """Bytes from *offset* to the end of the buffer, clamped to it."""
        offset = min(max(offset, 0), len(self._data))
        return self._data[offset:]
