"""
NT Header Parser
=================

Decodes ``IMAGE_NT_HEADERS``: the ``PE\\0\\0`` signature, the 20-byte COFF
file header and the optional header with its data directory array.

The optional header exists in two layouts, PE32 (magic ``0x10b``) and
PE32+ (magic ``0x20b``).  They differ only in the width of five
address-sized fields and in PE32's extra ``BaseOfData``, so both are
decoded by one routine driven by a layout built for the address width.

The data directory count (``NumberOfRvaAndSizes``) is attacker-supplied.
It is clamped to the entries that fit both in the declared optional header
size and in the buffer; a clamp sets
:attr:`~strata.core.models.OptionalHeader.data_directories_truncated` and
records a warning.

References:
    - Microsoft. (2024). PE Format, "Optional Header Data Directories".
"""

from __future__ import annotations

import struct

from strata.core.errors import (
    InvalidNtSignatureError,
    OutOfBoundsError,
    TruncatedHeaderError,
    UnsupportedOptionalHeaderMagicError,
)
from strata.core.models import (
    Bitness,
    DataDirectory,
    DirectoryEntry,
    DosHeader,
    FileHeader,
    NtHeader,
    OptionalHeader,
    ParseWarning,
    WarningKind,
)
from strata.parsers.constants import (
    DATA_DIRECTORY_SIZE,
    FILE_HEADER_SIZE,
    IMAGE_NUMBEROF_DIRECTORY_ENTRIES,
    PE32_MAGIC,
    PE32PLUS_MAGIC,
    PE_MAGIC,
    PE_SIGNATURE_SIZE,
    ROM_MAGIC,
)
from strata.parsers.cursor import ByteCursor

STAGE = "nt_header"

_FILE_HEADER_FMT = "<HHIIIHH"

_STANDARD_FIELDS: tuple[str, ...] = (
    "magic",
    "major_linker_version",
    "minor_linker_version",
    "size_of_code",
    "size_of_initialized_data",
    "size_of_uninitialized_data",
    "address_of_entry_point",
    "base_of_code",
)

_WINDOWS_FIELDS: tuple[str, ...] = (
    "image_base",
    "section_alignment",
    "file_alignment",
    "major_operating_system_version",
    "minor_operating_system_version",
    "major_image_version",
    "minor_image_version",
    "major_subsystem_version",
    "minor_subsystem_version",
    "win32_version_value",
    "size_of_image",
    "size_of_headers",
    "checksum",
    "subsystem",
    "dll_characteristics",
    "size_of_stack_reserve",
    "size_of_stack_commit",
    "size_of_heap_reserve",
    "size_of_heap_commit",
    "loader_flags",
    "number_of_rva_and_sizes",
)

_MAGIC_TO_BITNESS: dict[int, Bitness] = {
    PE32_MAGIC: Bitness.PE32,
    PE32PLUS_MAGIC: Bitness.PE32_PLUS,
}

# Recognised but not decoded
_UNSUPPORTED_MAGIC_KINDS: dict[int, str] = {
    ROM_MAGIC: "ROM image",
}


def optional_header_layout(bitness: Bitness) -> tuple[str, tuple[str, ...]]:
    """Return the :mod:`struct` format and field names of the fixed part.

    ``A`` below is the address width: ``I`` for PE32, ``Q`` for PE32+.
    PE32 additionally carries ``BaseOfData`` after ``BaseOfCode``.
    """
    addr = "Q" if bitness is Bitness.PE32_PLUS else "I"
    base_of_data = "" if bitness is Bitness.PE32_PLUS else "I"
    fmt = (
        "<HBBIIIII" + base_of_data
        + addr + "II" + "HHHHHH" + "IIII" + "HH"
        + addr * 4 + "II"
    )
    names = _STANDARD_FIELDS
    if bitness is Bitness.PE32:
        names = names + ("base_of_data",)
    return fmt, names + _WINDOWS_FIELDS


class NtHeaderParser:
    """Parse the NT headers located by the DOS header's ``e_lfanew``.

    Non-fatal findings (a clamped data directory count) are collected in
    :attr:`warnings`.
    """

    def __init__(self, cursor: ByteCursor, dos_header: DosHeader) -> None:
        self._cursor = cursor
        self._nt_offset = dos_header.e_lfanew
        self.warnings: list[ParseWarning] = []

    @property
    def file_header_offset(self) -> int:
        return self._nt_offset + PE_SIGNATURE_SIZE

    @property
    def optional_header_offset(self) -> int:
        return self.file_header_offset + FILE_HEADER_SIZE

    def section_table_offset(self, file_header: FileHeader) -> int:
        """The section table begins right after the declared optional header."""
        return self.optional_header_offset + file_header.size_of_optional_header

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    def parse(self) -> NtHeader:
        """Decode signature, file header and optional header.

        Raises:
            TruncatedHeaderError: A required header runs off the buffer.
            InvalidNtSignatureError: No ``PE\\0\\0`` at ``e_lfanew``.
            UnsupportedOptionalHeaderMagicError: Magic is not PE32/PE32+.
        """
        signature = self._read_signature()
        file_header = self._parse_file_header()
        optional_header = self._parse_optional_header(file_header)
        return NtHeader(
            signature=signature,
            file_header=file_header,
            optional_header=optional_header,
        )

    # ------------------------------------------------------------------ #
    #  Signature and COFF header
    # ------------------------------------------------------------------ #

    def _read_signature(self) -> bytes:
        try:
            signature = self._cursor.read_bytes(self._nt_offset, PE_SIGNATURE_SIZE)
        except OutOfBoundsError as exc:
            raise TruncatedHeaderError(
                f"e_lfanew 0x{self._nt_offset:x} points outside the "
                f"{len(self._cursor)}-byte buffer",
                stage=STAGE,
                offset=self._nt_offset,
            ) from exc

        if signature != PE_MAGIC:
            raise InvalidNtSignatureError(
                f"expected PE signature {PE_MAGIC!r}, found {signature!r}",
                stage=STAGE,
                offset=self._nt_offset,
            )
        return signature

    def _parse_file_header(self) -> FileHeader:
        offset = self.file_header_offset
        try:
            fields = self._cursor.unpack(_FILE_HEADER_FMT, offset)
        except OutOfBoundsError as exc:
            raise TruncatedHeaderError(
                "buffer ends inside the COFF file header",
                stage=STAGE,
                offset=offset,
            ) from exc

        (
            machine,
            number_of_sections,
            time_date_stamp,
            pointer_to_symbol_table,
            number_of_symbols,
            size_of_optional_header,
            characteristics,
        ) = fields
        return FileHeader(
            machine=machine,
            number_of_sections=number_of_sections,
            time_date_stamp=time_date_stamp,
            pointer_to_symbol_table=pointer_to_symbol_table,
            number_of_symbols=number_of_symbols,
            size_of_optional_header=size_of_optional_header,
            characteristics=characteristics,
        )

    # ------------------------------------------------------------------ #
    #  Optional header
    # ------------------------------------------------------------------ #

    def _parse_optional_header(self, file_header: FileHeader) -> OptionalHeader:
        offset = self.optional_header_offset
        try:
            magic = self._cursor.read_u16(offset)
        except OutOfBoundsError as exc:
            raise TruncatedHeaderError(
                "buffer ends before the optional header magic",
                stage=STAGE,
                offset=offset,
            ) from exc

        bitness = _MAGIC_TO_BITNESS.get(magic)
        if bitness is None:
            raise UnsupportedOptionalHeaderMagicError(
                magic,
                image_kind=_UNSUPPORTED_MAGIC_KINDS.get(magic),
                stage=STAGE,
                offset=offset,
            )

        fmt, names = optional_header_layout(bitness)
        try:
            values = self._cursor.unpack(fmt, offset)
        except OutOfBoundsError as exc:
            raise TruncatedHeaderError(
                f"buffer ends inside the {bitness.value} optional header",
                stage=STAGE,
                offset=offset,
            ) from exc
        fields = dict(zip(names, values))

        fixed_size = struct.calcsize(fmt)
        directories, truncated = self._parse_data_directories(
            offset + fixed_size,
            declared=fields["number_of_rva_and_sizes"],
            space_in_header=file_header.size_of_optional_header - fixed_size,
        )

        return OptionalHeader(
            bitness=bitness,
            data_directories=directories,
            data_directories_truncated=truncated,
            **fields,
        )

    def _parse_data_directories(
        self,
        offset: int,
        declared: int,
        space_in_header: int,
    ) -> tuple[list[DataDirectory], bool]:
        """Decode ``min(declared, fits in header, fits in buffer)`` entries."""
        fit_header = max(0, space_in_header) // DATA_DIRECTORY_SIZE
        fit_buffer = self._cursor.remaining(offset) // DATA_DIRECTORY_SIZE
        count = min(declared, fit_header, fit_buffer)
        truncated = count < declared

        if truncated:
            self.warnings.append(ParseWarning(
                kind=WarningKind.CLAMPED,
                stage=STAGE,
                offset=offset,
                message=(
                    f"NumberOfRvaAndSizes declares {declared} data directories, "
                    f"only {count} fit (header room {fit_header}, "
                    f"buffer room {fit_buffer})"
                ),
            ))

        directories: list[DataDirectory] = []
        for index in range(count):
            rva, size = self._cursor.unpack("<II", offset + index * DATA_DIRECTORY_SIZE)
            entry = (
                DirectoryEntry(index)
                if index < IMAGE_NUMBEROF_DIRECTORY_ENTRIES
                else None
            )
            directories.append(DataDirectory(
                index=index,
                entry=entry,
                virtual_address=rva,
                size=size,
            ))
        return directories, truncated
