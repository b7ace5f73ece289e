"""
Import Table Parser
====================

Walks the import directory: an array of 20-byte ``IMAGE_IMPORT_DESCRIPTOR``
records terminated by an all-zero entry.  Each descriptor names a module
and points at a thunk array (the import lookup table, or the import
address table when no lookup table is present) terminated by a zero thunk.
A thunk with its ordinal flag set imports by ordinal; otherwise its low
31 bits are the RVA of an ``IMAGE_IMPORT_BY_NAME`` hint/name pair.

Failure policy:
    - Directory RVA that maps into no section: the whole table is
      unresolvable (:class:`UnresolvableDirectoryError`).
    - Descriptor array or thunk array running off the buffer, or exceeding
      the configured limit: whatever was decoded is kept, the sequence is
      flagged as truncated and a warning is recorded.
    - Thunk slots read across the whole table exceeding the thunk budget:
      the descriptor walk stops there.  Descriptors may share one thunk
      array, so the per-descriptor limit alone does not bound the work.
      The budget never exceeds the number of slots the buffer can hold.
    - A module name or hint/name pair that cannot be read: that single
      entry is skipped with a warning, the rest of the table is decoded.

References:
    - Microsoft. (2024). PE Format, "The .idata Section".
"""

from __future__ import annotations

from typing import Iterator, Optional

from strata.core.errors import (
    OutOfBoundsError,
    UnmappedRvaError,
    UnresolvableDirectoryError,
)
from strata.core.models import (
    Bitness,
    DirectoryEntry,
    ImportByName,
    ImportByOrdinal,
    ImportDescriptor,
    ImportThunk,
    OptionalHeader,
    ParseWarning,
    WarningKind,
)
from strata.parsers.constants import (
    HINT_NAME_RVA_MASK,
    IMAGE_ORDINAL_FLAG32,
    IMAGE_ORDINAL_FLAG64,
    IMPORT_DESCRIPTOR_SIZE,
    ORDINAL_MASK,
)
from strata.parsers.cursor import ByteCursor
from strata.parsers.rva import RvaTranslator

STAGE = "imports"

# OriginalFirstThunk, TimeDateStamp, ForwarderChain, Name, FirstThunk
_DESCRIPTOR_FMT = "<IIIII"


class ImportTableParser:
    """Decode the import directory of an image.

    After :meth:`parse` returns, :attr:`truncated` tells whether the
    descriptor array was cut short and :attr:`warnings` holds every
    non-fatal finding.

    Args:
        cursor:          Shared buffer reader.
        translator:      RVA translator built from the section table.
        optional_header: Decoded optional header (bitness, directories).
        max_descriptors: Upper bound on descriptors decoded.
        max_thunks:      Upper bound on thunks decoded per descriptor.
        max_total_thunks: Upper bound on thunk slots read for the whole
                         table, further capped at ``len(buffer) // width``.
    """

    def __init__(
        self,
        cursor: ByteCursor,
        translator: RvaTranslator,
        optional_header: OptionalHeader,
        *,
        max_descriptors: int = 4096,
        max_thunks: int = 65536,
        max_total_thunks: int = 1_048_576,
    ) -> None:
        self._cursor = cursor
        self._translator = translator
        self._optional_header = optional_header
        self._max_descriptors = max_descriptors
        self._max_thunks = max_thunks

        plus = optional_header.bitness is Bitness.PE32_PLUS
        self._thunk_width = optional_header.bitness.address_width
        self._ordinal_flag = IMAGE_ORDINAL_FLAG64 if plus else IMAGE_ORDINAL_FLAG32
        self._thunk_budget = min(max_total_thunks, len(cursor) // self._thunk_width)
        self._budget_exhausted = False

        self.truncated: bool = False
        self.warnings: list[ParseWarning] = []

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    def parse(self) -> list[ImportDescriptor]:
        """Decode all import descriptors and their thunks.

        Returns:
            Descriptors in table order; empty when the image has no import
            directory.

        Raises:
            UnresolvableDirectoryError: The directory RVA maps into no section.
        """
        directory = self._optional_header.directory(DirectoryEntry.IMPORT)
        if directory is None or not directory.is_present:
            return []

        try:
            table_offset = self._translator.translate(directory.virtual_address, stage=STAGE)
        except UnmappedRvaError as exc:
            raise UnresolvableDirectoryError(
                "import", directory.virtual_address, stage=STAGE
            ) from exc

        descriptors: list[ImportDescriptor] = []
        for record_offset, fields in self._iter_descriptor_records(table_offset):
            descriptors.append(self._build_descriptor(record_offset, fields))
            if self._budget_exhausted:
                self.truncated = True
                break
        return descriptors

    # ------------------------------------------------------------------ #
    #  Descriptor array
    # ------------------------------------------------------------------ #

    def _iter_descriptor_records(
        self, table_offset: int
    ) -> Iterator[tuple[int, tuple[int, int, int, int, int]]]:
        """Yield raw descriptor records up to the sentinel, buffer end or limit."""
        for index in range(self._max_descriptors):
            record_offset = table_offset + index * IMPORT_DESCRIPTOR_SIZE
            try:
                fields = self._cursor.unpack(_DESCRIPTOR_FMT, record_offset)
            except OutOfBoundsError:
                self.truncated = True
                self._warn(
                    WarningKind.TRUNCATION,
                    record_offset,
                    f"import descriptor table runs off the buffer after "
                    f"{index} descriptor(s) without a null terminator",
                )
                return
            if not any(fields):
                return
            yield record_offset, fields

        self.truncated = True
        self._warn(
            WarningKind.TRUNCATION,
            table_offset,
            f"import descriptor table exceeds the limit of "
            f"{self._max_descriptors} descriptor(s)",
        )

    def _build_descriptor(
        self,
        record_offset: int,
        fields: tuple[int, int, int, int, int],
    ) -> ImportDescriptor:
        (
            original_first_thunk,
            time_date_stamp,
            forwarder_chain,
            name_rva,
            first_thunk,
        ) = fields

        name = self._read_module_name(name_rva, record_offset)
        thunks, thunks_truncated = self._parse_thunks(
            original_first_thunk or first_thunk,
            first_thunk or original_first_thunk,
            name or f"descriptor@0x{record_offset:x}",
        )
        return ImportDescriptor(
            original_first_thunk=original_first_thunk,
            time_date_stamp=time_date_stamp,
            forwarder_chain=forwarder_chain,
            name_rva=name_rva,
            first_thunk=first_thunk,
            name=name,
            thunks=thunks,
            thunks_truncated=thunks_truncated,
        )

    def _read_module_name(self, name_rva: int, record_offset: int) -> Optional[str]:
        try:
            offset = self._translator.translate(name_rva, stage=STAGE)
            return self._cursor.read_cstring(offset)
        except (UnmappedRvaError, OutOfBoundsError) as exc:
            self._warn(
                WarningKind.ENTRY,
                record_offset,
                f"module name at RVA 0x{name_rva:x} is unreadable: {exc.message}",
            )
            return None

    # ------------------------------------------------------------------ #
    #  Thunk array
    # ------------------------------------------------------------------ #

    def _parse_thunks(
        self,
        table_rva: int,
        address_table_rva: int,
        module: str,
    ) -> tuple[list[ImportThunk], bool]:
        """Decode one zero-terminated thunk array.

        Returns:
            ``(thunks, truncated)``.
        """
        if table_rva == 0:
            return [], False

        try:
            table_offset = self._translator.translate(table_rva, stage=STAGE)
        except UnmappedRvaError:
            self._warn(
                WarningKind.ENTRY,
                None,
                f"{module}: thunk table RVA 0x{table_rva:x} does not map into any section",
            )
            return [], False

        width = self._thunk_width
        thunks: list[ImportThunk] = []
        for index in range(self._max_thunks):
            slot_offset = table_offset + index * width
            if self._thunk_budget == 0:
                self._budget_exhausted = True
                self._warn(
                    WarningKind.TRUNCATION,
                    slot_offset,
                    f"{module}: import table exhausted its budget of thunk "
                    f"slots; remaining descriptors are not decoded",
                )
                return thunks, True
            self._thunk_budget -= 1
            try:
                value = self._cursor.read_uint(slot_offset, width)
            except OutOfBoundsError:
                self._warn(
                    WarningKind.TRUNCATION,
                    slot_offset,
                    f"{module}: thunk array runs off the buffer after {index} entr(ies)",
                )
                return thunks, True
            if value == 0:
                return thunks, False

            thunk = self._decode_thunk(value, address_table_rva + index * width, module, slot_offset)
            if thunk is not None:
                thunks.append(thunk)

        self._warn(
            WarningKind.TRUNCATION,
            table_offset,
            f"{module}: thunk array exceeds the limit of {self._max_thunks} entr(ies)",
        )
        return thunks, True

    def _decode_thunk(
        self,
        value: int,
        thunk_rva: int,
        module: str,
        slot_offset: int,
    ) -> Optional[ImportThunk]:
        if value & self._ordinal_flag:
            return ImportByOrdinal(
                ordinal=value & ORDINAL_MASK,
                thunk_rva=thunk_rva,
                raw_value=value,
            )

        hint_name_rva = value & HINT_NAME_RVA_MASK
        try:
            offset = self._translator.translate(hint_name_rva, stage=STAGE)
            hint = self._cursor.read_u16(offset)
            name = self._cursor.read_cstring(offset + 2)
        except (UnmappedRvaError, OutOfBoundsError) as exc:
            self._warn(
                WarningKind.ENTRY,
                slot_offset,
                f"{module}: hint/name entry at RVA 0x{hint_name_rva:x} "
                f"is unreadable: {exc.message}",
            )
            return None

        return ImportByName(
            hint=hint,
            name=name,
            hint_name_rva=hint_name_rva,
            thunk_rva=thunk_rva,
            raw_value=value,
        )

    # ------------------------------------------------------------------ #
    #  Helpers
    # ------------------------------------------------------------------ #

    def _warn(self, kind: WarningKind, offset: Optional[int], message: str) -> None:
        self.warnings.append(
            ParseWarning(kind=kind, stage=STAGE, offset=offset, message=message)
        )
