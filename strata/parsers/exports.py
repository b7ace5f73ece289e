"""
Export Table Parser
====================

Decodes the 40-byte ``IMAGE_EXPORT_DIRECTORY`` and, optionally, walks
the three tables it points at:

    - the export address table (``NumberOfFunctions`` x u32 RVAs),
    - the name pointer table (``NumberOfNames`` x u32 RVAs of names),
    - the ordinal table (``NumberOfNames`` x u16 address-table indices).

Every table walk is bounded by its declared count, by the buffer length
and by ``max_symbols``, whichever comes first.  An address-table RVA that
falls inside the export directory's own range is a forwarder string
(``"OTHERDLL.Symbol"``) rather than code.

References:
    - Microsoft. (2024). PE Format, "The .edata Section (Image Only)".
"""

from __future__ import annotations

from typing import Optional

from strata.core.errors import (
    OutOfBoundsError,
    UnmappedRvaError,
    UnresolvableDirectoryError,
)
from strata.core.models import (
    DataDirectory,
    DirectoryEntry,
    ExportDirectory,
    ExportSymbol,
    OptionalHeader,
    ParseWarning,
    WarningKind,
)
from strata.parsers.constants import EXPORT_DIRECTORY_SIZE
from strata.parsers.cursor import ByteCursor
from strata.parsers.rva import RvaTranslator

STAGE = "exports"

# Characteristics, TimeDateStamp, MajorVersion, MinorVersion, Name, Base,
# NumberOfFunctions, NumberOfNames, AddressOfFunctions, AddressOfNames,
# AddressOfNameOrdinals
_EXPORT_DIRECTORY_FMT = "<IIHHIIIIIII"


class ExportTableParser:
    """Decode the export directory of an image.

    Args:
        cursor:          Shared buffer reader.
        translator:      RVA translator built from the section table.
        optional_header: Decoded optional header.
        walk_symbols:    Also decode the name/ordinal/address tables.
        max_symbols:     Upper bound on entries read from each table.
    """

    def __init__(
        self,
        cursor: ByteCursor,
        translator: RvaTranslator,
        optional_header: OptionalHeader,
        *,
        walk_symbols: bool = True,
        max_symbols: int = 65536,
    ) -> None:
        self._cursor = cursor
        self._translator = translator
        self._optional_header = optional_header
        self._walk_symbols = walk_symbols
        self._max_symbols = max_symbols
        self.warnings: list[ParseWarning] = []

    def parse(self) -> Optional[ExportDirectory]:
        """Decode the export directory.

        Returns:
            The directory, or ``None`` when the image has none or it runs
            off the end of the buffer.

        Raises:
            UnresolvableDirectoryError: The directory RVA maps into no section.
        """
        directory = self._optional_header.directory(DirectoryEntry.EXPORT)
        if directory is None or not directory.is_present:
            return None

        try:
            offset = self._translator.translate(directory.virtual_address, stage=STAGE)
        except UnmappedRvaError as exc:
            raise UnresolvableDirectoryError(
                "export", directory.virtual_address, stage=STAGE
            ) from exc

        try:
            fields = self._cursor.unpack(_EXPORT_DIRECTORY_FMT, offset)
        except OutOfBoundsError:
            self._warn(
                WarningKind.TRUNCATION,
                offset,
                f"export directory needs {EXPORT_DIRECTORY_SIZE} byte(s), "
                f"only {self._cursor.remaining(offset)} remain",
            )
            return None

        (
            characteristics,
            time_date_stamp,
            major_version,
            minor_version,
            name_rva,
            base,
            number_of_functions,
            number_of_names,
            address_of_functions,
            address_of_names,
            address_of_name_ordinals,
        ) = fields

        symbols: list[ExportSymbol] = []
        if self._walk_symbols:
            symbols = self._walk(
                directory,
                base=base,
                number_of_functions=number_of_functions,
                number_of_names=number_of_names,
                address_of_functions=address_of_functions,
                address_of_names=address_of_names,
                address_of_name_ordinals=address_of_name_ordinals,
            )

        return ExportDirectory(
            characteristics=characteristics,
            time_date_stamp=time_date_stamp,
            major_version=major_version,
            minor_version=minor_version,
            name_rva=name_rva,
            name=self._read_rva_string(name_rva, "module name"),
            base=base,
            number_of_functions=number_of_functions,
            number_of_names=number_of_names,
            address_of_functions=address_of_functions,
            address_of_names=address_of_names,
            address_of_name_ordinals=address_of_name_ordinals,
            symbols=symbols,
        )

    # ------------------------------------------------------------------ #
    #  Symbol tables
    # ------------------------------------------------------------------ #

    def _walk(
        self,
        directory: DataDirectory,
        *,
        base: int,
        number_of_functions: int,
        number_of_names: int,
        address_of_functions: int,
        address_of_names: int,
        address_of_name_ordinals: int,
    ) -> list[ExportSymbol]:
        addresses = self._read_table(
            address_of_functions, number_of_functions, 4, "export address table"
        )
        name_rvas = self._read_table(
            address_of_names, number_of_names, 4, "export name pointer table"
        )
        ordinals = self._read_table(
            address_of_name_ordinals, number_of_names, 2, "export ordinal table"
        )

        # address-table index -> first name that refers to it
        names: dict[int, str] = {}
        for name_rva, index in zip(name_rvas, ordinals):
            if index >= len(addresses):
                self._warn(
                    WarningKind.ENTRY,
                    None,
                    f"export name ordinal {index} is outside the address table "
                    f"of {len(addresses)} entr(ies)",
                )
                continue
            name = self._read_rva_string(name_rva, "export name")
            if name is not None:
                names.setdefault(index, name)

        dir_start = directory.virtual_address
        dir_end = dir_start + directory.size

        symbols: list[ExportSymbol] = []
        for index, rva in enumerate(addresses):
            if rva == 0:
                continue
            forwarder = None
            if dir_start <= rva < dir_end:
                forwarder = self._read_rva_string(rva, "forwarder")
            symbols.append(ExportSymbol(
                ordinal=base + index,
                rva=rva,
                name=names.get(index),
                forwarder=forwarder,
            ))
        return symbols

    def _read_table(self, rva: int, count: int, width: int, label: str) -> list[int]:
        """Read up to *count* little-endian integers of *width* bytes at *rva*."""
        if count == 0:
            return []

        try:
            offset = self._translator.translate(rva, stage=STAGE)
        except UnmappedRvaError:
            self._warn(
                WarningKind.DIRECTORY_RESOLUTION,
                None,
                f"{label} RVA 0x{rva:x} does not map into any section",
            )
            return []

        limit = min(count, self._max_symbols)
        fit = self._cursor.remaining(offset) // width
        if fit < limit:
            self._warn(
                WarningKind.TRUNCATION,
                offset,
                f"{label} declares {count} entr(ies), only {fit} fit in the buffer",
            )
            limit = fit
        elif limit < count:
            self._warn(
                WarningKind.TRUNCATION,
                offset,
                f"{label} declares {count} entr(ies), limited to {limit}",
            )

        fmt = "<H" if width == 2 else "<I"
        return [self._cursor.unpack(fmt, offset + i * width)[0] for i in range(limit)]

    # ------------------------------------------------------------------ #
    #  Helpers
    # ------------------------------------------------------------------ #

    def _read_rva_string(self, rva: int, label: str) -> Optional[str]:
        try:
            return self._cursor.read_cstring(self._translator.translate(rva, stage=STAGE))
        except (UnmappedRvaError, OutOfBoundsError) as exc:
            self._warn(
                WarningKind.ENTRY,
                None,
                f"{label} at RVA 0x{rva:x} is unreadable: {exc.message}",
            )
            return None

    def _warn(self, kind: WarningKind, offset: Optional[int], message: str) -> None:
        self.warnings.append(
            ParseWarning(kind=kind, stage=STAGE, offset=offset, message=message)
        )
