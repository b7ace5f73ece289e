"""
Section Table Parser
=====================

Decodes the array of 40-byte ``IMAGE_SECTION_HEADER`` records that
immediately follows the optional header.  The table position is computed
from ``SizeOfOptionalHeader`` as declared in the file header, never from
the size of the optional header that was actually decoded.
"""

from __future__ import annotations

from strata.core.errors import SectionTableOverflowError
from strata.core.models import SectionHeader
from strata.parsers.constants import SECTION_HEADER_SIZE, SECTION_NAME_SIZE
from strata.parsers.cursor import ByteCursor

STAGE = "section_table"

# Name[8], VirtualSize, VirtualAddress, SizeOfRawData, PointerToRawData,
# PointerToRelocations, PointerToLinenumbers, NumberOfRelocations,
# NumberOfLinenumbers, Characteristics
_SECTION_FMT = "<8sIIIIIIHHI"


def decode_section_name(raw: bytes) -> tuple[bytes, str]:
    """Trim trailing NULs from an 8-byte name field and decode it.

    Non-text names are not an error: the trimmed bytes are returned as-is
    next to a lossy text rendering.
    """
    trimmed = raw.rstrip(b"\x00")
    return trimmed, trimmed.decode("utf-8", errors="replace")


class SectionTableParser:
    """Parse ``count`` section headers starting at ``offset``."""

    def __init__(self, cursor: ByteCursor, offset: int, count: int) -> None:
        self._cursor = cursor
        self._offset = offset
        self._count = count

    @property
    def end_offset(self) -> int:
        """First byte after the table."""
        return self._offset + self._count * SECTION_HEADER_SIZE

    def parse(self) -> list[SectionHeader]:
        """Decode every declared section header, in file order.

        Raises:
            SectionTableOverflowError: The table does not fit in the buffer.
        """
        table_size = self._count * SECTION_HEADER_SIZE
        if not self._cursor.in_bounds(self._offset, table_size):
            raise SectionTableOverflowError(
                f"{self._count} section header(s) need {table_size} byte(s), "
                f"only {self._cursor.remaining(self._offset)} remain",
                stage=STAGE,
                offset=self._offset,
            )

        sections: list[SectionHeader] = []
        for index in range(self._count):
            sections.append(self._parse_one(self._offset + index * SECTION_HEADER_SIZE))
        return sections

    def _parse_one(self, offset: int) -> SectionHeader:
        (
            raw_name,
            virtual_size,
            virtual_address,
            size_of_raw_data,
            pointer_to_raw_data,
            pointer_to_relocations,
            pointer_to_linenumbers,
            number_of_relocations,
            number_of_linenumbers,
            characteristics,
        ) = self._cursor.unpack(_SECTION_FMT, offset)

        trimmed, name = decode_section_name(raw_name[:SECTION_NAME_SIZE])
        return SectionHeader(
            raw_name=trimmed,
            name=name,
            virtual_size=virtual_size,
            virtual_address=virtual_address,
            size_of_raw_data=size_of_raw_data,
            pointer_to_raw_data=pointer_to_raw_data,
            pointer_to_relocations=pointer_to_relocations,
            pointer_to_linenumbers=pointer_to_linenumbers,
            number_of_relocations=number_of_relocations,
            number_of_linenumbers=number_of_linenumbers,
            characteristics=characteristics,
        )
