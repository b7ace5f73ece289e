"""
RVA Translation
================

Maps Relative Virtual Addresses to file offsets through a decoded section
table.

A section contains ``rva`` when::

    virtual_address <= rva < virtual_address + max(virtual_size, size_of_raw_data)

Sections are tried in table order and the first match wins, so overlapping
declarations resolve the same way for every lookup.  The translator never
looks at the buffer: an offset in a section's zero-filled tail is returned
as-is and must still be bounds-checked by the reader.
"""

from __future__ import annotations

from typing import Optional, Sequence

from strata.core.errors import UnmappedRvaError
from strata.core.models import SectionHeader


class RvaTranslator:
    """Pure RVA -> file offset function over an immutable section table."""

    __slots__ = ("_sections",)

    def __init__(self, sections: Sequence[SectionHeader]) -> None:
        self._sections: tuple[SectionHeader, ...] = tuple(sections)

    @property
    def sections(self) -> tuple[SectionHeader, ...]:
        return self._sections

    def section_for(self, rva: int) -> Optional[SectionHeader]:
        """Return the first section containing *rva*, or ``None``."""
        for section in self._sections:
            if section.contains(rva):
                return section
        return None

    def translate(self, rva: int, *, stage: str = "rva") -> int:
        """Translate *rva* to a file offset.

        Raises:
            UnmappedRvaError: No section contains *rva*.
        """
        section = self.section_for(rva)
        if section is None:
            raise UnmappedRvaError(rva, stage=stage)
        return section.pointer_to_raw_data + (rva - section.virtual_address)

    def try_translate(self, rva: int) -> Optional[int]:
        section = self.section_for(rva)
        if section is None:
            return None
        return section.pointer_to_raw_data + (rva - section.virtual_address)
