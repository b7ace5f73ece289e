"""
Strata Exceptions
==================

Exception hierarchy for the PE structural decoder.

Every exception carries the decoding *stage* that raised it and, where one
applies, the absolute byte *offset* into the input buffer, so that a
failure against hostile input can be located precisely.

Fatal errors abort :func:`strata.parse`.  The recoverable errors
(:class:`OutOfBoundsError`, :class:`UnmappedRvaError`,
:class:`UnresolvableDirectoryError`) are raised by the individual parsers
and converted into :class:`~strata.core.models.ParseWarning` entries by the
engine when they occur in an optional table.
"""

from __future__ import annotations

from typing import Optional


class PEFormatError(Exception):
    """Base class for every error raised while decoding a PE image.

    Attributes:
        stage:  Decoder stage name (``"dos_header"``, ``"imports"``, ...).
        offset: Absolute buffer offset involved, or ``None``.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str = "",
        offset: Optional[int] = None,
    ) -> None:
        self.message = message
        self.stage = stage
        self.offset = offset
        super().__init__(self._format())

    def _format(self) -> str:
        parts: list[str] = []
        if self.stage:
            parts.append(f"[{self.stage}]")
        parts.append(self.message)
        if self.offset is not None:
            parts.append(f"(offset 0x{self.offset:x})")
        return " ".join(parts)


# ========================== Fatal ==========================================


class TruncatedHeaderError(PEFormatError):
    """The buffer is too short to hold a required fixed-size header."""


class InvalidDosMagicError(PEFormatError):
    """The first two bytes of the buffer are not ``MZ``."""


class InvalidNtSignatureError(PEFormatError):
    """The four bytes at ``e_lfanew`` are not ``PE\\0\\0``."""


class UnsupportedOptionalHeaderMagicError(PEFormatError):
    """The optional header magic is neither PE32 nor PE32+."""

    def __init__(
        self,
        magic: int,
        *,
        image_kind: Optional[str] = None,
        stage: str = "",
        offset: Optional[int] = None,
    ) -> None:
        self.magic = magic
        self.image_kind = image_kind
        detail = f" ({image_kind})" if image_kind else ""
        super().__init__(
            f"unsupported optional header magic 0x{magic:x}{detail}",
            stage=stage,
            offset=offset,
        )


class SectionTableOverflowError(PEFormatError):
    """The declared section count runs past the end of the buffer."""


# ========================== Recoverable ====================================


class OutOfBoundsError(PEFormatError):
    """A read would touch memory outside the input buffer."""

    def __init__(self, offset: int, length: int, buffer_size: int) -> None:
        self.length = length
        self.buffer_size = buffer_size
        super().__init__(
            f"read of {length} byte(s) exceeds buffer of {buffer_size} byte(s)",
            stage="cursor",
            offset=offset,
        )


class UnmappedRvaError(PEFormatError):
    """An RVA does not fall inside any declared section."""

    def __init__(self, rva: int, *, stage: str = "rva") -> None:
        self.rva = rva
        super().__init__(f"RVA 0x{rva:x} does not map into any section", stage=stage)


class UnresolvableDirectoryError(PEFormatError):
    """A data directory's RVA cannot be translated to a file offset."""

    def __init__(self, directory: str, rva: int, *, stage: str = "") -> None:
        self.directory = directory
        self.rva = rva
        super().__init__(
            f"{directory} directory RVA 0x{rva:x} does not map into any section",
            stage=stage or directory,
        )
