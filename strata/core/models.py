"""
Strata Data Models
===================

Pydantic-based data models for the decoded structure of a Portable
Executable image.  Every model is frozen: a :class:`PeDocument` is a pure
decode-then-inspect value, created once per :func:`strata.parse` call and
never mutated afterwards.

The models mirror the on-disk structures closely (field names follow the
``IMAGE_*`` structures of the PE format documentation) and add a small
number of read-only convenience properties for common questions
(``is_dll``, ``timestamp``, ``flags`` ...).

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
    - Pietrek, M. (2002). An In-Depth Look into the Win32 Portable
      Executable File Format. MSDN Magazine.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from strata.parsers.constants import (
    IMAGE_FILE_DLL,
    IMAGE_FILE_EXECUTABLE_IMAGE,
    IMAGE_SCN_CNT_CODE,
    IMAGE_SCN_CNT_INITIALIZED_DATA,
    IMAGE_SCN_CNT_UNINITIALIZED_DATA,
    IMAGE_SCN_MEM_EXECUTE,
    IMAGE_SCN_MEM_READ,
    IMAGE_SCN_MEM_WRITE,
    MACHINE_NAMES,
    SUBSYSTEM_NAMES,
)


def _utc_timestamp(value: int) -> Optional[datetime]:
    """Convert a 32-bit ``TimeDateStamp`` to UTC, ``None`` when zero."""
    if value == 0:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OSError, ValueError, OverflowError):
        return None


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Machine(enum.IntEnum):
    """Known COFF machine codes.

    :attr:`FileHeader.machine` keeps the raw value, so codes outside this
    enumeration survive decoding and map to :attr:`UNKNOWN` here.
    """
    UNKNOWN = 0x0
    I386 = 0x14C
    R4000 = 0x166
    ARM = 0x1C0
    THUMB = 0x1C2
    ARMNT = 0x1C4
    POWERPC = 0x1F0
    IA64 = 0x200
    MIPS16 = 0x266
    EBC = 0xEBC
    RISCV32 = 0x5032
    RISCV64 = 0x5064
    RISCV128 = 0x5128
    LOONGARCH32 = 0x6232
    LOONGARCH64 = 0x6264
    AMD64 = 0x8664
    ARM64 = 0xAA64


class Bitness(str, enum.Enum):
    """Optional header variant, selected by its magic value."""
    PE32 = "pe32"
    PE32_PLUS = "pe32+"

    @property
    def address_width(self) -> int:
        """Width in bytes of address-sized fields and import thunks."""
        return 8 if self is Bitness.PE32_PLUS else 4

    @property
    def bits(self) -> int:
        return self.address_width * 8


class DirectoryEntry(enum.IntEnum):
    """Indices into the optional header's data directory array."""
    EXPORT = 0
    IMPORT = 1
    RESOURCE = 2
    EXCEPTION = 3
    SECURITY = 4
    BASERELOC = 5
    DEBUG = 6
    ARCHITECTURE = 7
    GLOBALPTR = 8
    TLS = 9
    LOAD_CONFIG = 10
    BOUND_IMPORT = 11
    IAT = 12
    DELAY_IMPORT = 13
    COM_DESCRIPTOR = 14
    RESERVED = 15


class WarningKind(str, enum.Enum):
    """Classes of non-fatal decode diagnostics."""
    DIRECTORY_RESOLUTION = "directory_resolution"
    ENTRY = "entry"
    TRUNCATION = "truncation"
    CLAMPED = "clamped"


# ---------------------------------------------------------------------------
# Headers
# ---------------------------------------------------------------------------

class DosHeader(_Frozen):
    """The legacy 64-byte MS-DOS header (``IMAGE_DOS_HEADER``).

    Attributes:
        e_magic: Magic number, always ``0x5A4D`` (``MZ``) once decoded.
        e_lfanew: File offset of the NT headers.
    """
    e_magic: int
    e_cblp: int = 0
    e_cp: int = 0
    e_crlc: int = 0
    e_cparhdr: int = 0
    e_minalloc: int = 0
    e_maxalloc: int = 0
    e_ss: int = 0
    e_sp: int = 0
    e_csum: int = 0
    e_ip: int = 0
    e_cs: int = 0
    e_lfarlc: int = 0
    e_ovno: int = 0
    e_res: bytes = b""
    e_oemid: int = 0
    e_oeminfo: int = 0
    e_res2: bytes = b""
    e_lfanew: int


class FileHeader(_Frozen):
    """The COFF file header (``IMAGE_FILE_HEADER``).

    Attributes:
        machine: Raw machine code; unknown values are preserved.
        number_of_sections: Declared number of section table entries.
        time_date_stamp: Link time as seconds since the Unix epoch.
        size_of_optional_header: Size in bytes of the optional header that
            follows; the section table starts right after it.
        characteristics: ``IMAGE_FILE_*`` flag bits.
    """
    machine: int
    number_of_sections: int
    time_date_stamp: int
    pointer_to_symbol_table: int
    number_of_symbols: int
    size_of_optional_header: int
    characteristics: int

    @property
    def machine_type(self) -> Machine:
        try:
            return Machine(self.machine)
        except ValueError:
            return Machine.UNKNOWN

    @property
    def machine_name(self) -> str:
        return MACHINE_NAMES.get(self.machine, f"unknown(0x{self.machine:x})")

    @property
    def timestamp(self) -> Optional[datetime]:
        return _utc_timestamp(self.time_date_stamp)

    @property
    def is_dll(self) -> bool:
        return bool(self.characteristics & IMAGE_FILE_DLL)

    @property
    def is_executable(self) -> bool:
        return bool(self.characteristics & IMAGE_FILE_EXECUTABLE_IMAGE)


class DataDirectory(_Frozen):
    """One ``(virtual address, size)`` slot of the data directory array."""
    index: int
    entry: Optional[DirectoryEntry] = None
    virtual_address: int = 0
    size: int = 0

    @property
    def is_present(self) -> bool:
        return self.size != 0


class OptionalHeader(_Frozen):
    """The PE32 / PE32+ optional header.

    A single model covers both variants.  :attr:`bitness` records which one
    was decoded; address-sized fields (``image_base`` and the stack / heap
    sizes) hold 64-bit values for PE32+ images.  ``base_of_data`` only
    exists in PE32 and is ``None`` otherwise.

    ``number_of_rva_and_sizes`` is the declared directory count.  When it
    exceeds the space actually available, only the entries that fit are
    decoded and :attr:`data_directories_truncated` is set.
    """
    magic: int
    bitness: Bitness
    major_linker_version: int
    minor_linker_version: int
    size_of_code: int
    size_of_initialized_data: int
    size_of_uninitialized_data: int
    address_of_entry_point: int
    base_of_code: int
    base_of_data: Optional[int] = None
    image_base: int
    section_alignment: int
    file_alignment: int
    major_operating_system_version: int
    minor_operating_system_version: int
    major_image_version: int
    minor_image_version: int
    major_subsystem_version: int
    minor_subsystem_version: int
    win32_version_value: int
    size_of_image: int
    size_of_headers: int
    checksum: int
    subsystem: int
    dll_characteristics: int
    size_of_stack_reserve: int
    size_of_stack_commit: int
    size_of_heap_reserve: int
    size_of_heap_commit: int
    loader_flags: int
    number_of_rva_and_sizes: int
    data_directories: list[DataDirectory] = Field(default_factory=list)
    data_directories_truncated: bool = False

    @property
    def subsystem_name(self) -> str:
        return SUBSYSTEM_NAMES.get(self.subsystem, f"Unknown(0x{self.subsystem:x})")

    def directory(self, entry: DirectoryEntry | int) -> Optional[DataDirectory]:
        """Return the data directory at *entry*, or ``None`` if not decoded."""
        index = int(entry)
        if 0 <= index < len(self.data_directories):
            return self.data_directories[index]
        return None


class NtHeader(_Frozen):
    """``IMAGE_NT_HEADERS``: signature, file header and optional header."""
    signature: bytes
    file_header: FileHeader
    optional_header: OptionalHeader


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

class SectionHeader(_Frozen):
    """A 40-byte section table entry (``IMAGE_SECTION_HEADER``).

    Attributes:
        raw_name: The 8-byte name field with trailing NUL bytes removed.
        name: *raw_name* decoded as text; undecodable bytes are replaced,
            the original bytes stay available in *raw_name*.
    """
    raw_name: bytes
    name: str
    virtual_size: int
    virtual_address: int
    size_of_raw_data: int
    pointer_to_raw_data: int
    pointer_to_relocations: int
    pointer_to_linenumbers: int
    number_of_relocations: int
    number_of_linenumbers: int
    characteristics: int

    @property
    def name_is_text(self) -> bool:
        try:
            self.raw_name.decode("utf-8")
        except UnicodeDecodeError:
            return False
        return True

    @property
    def virtual_extent(self) -> int:
        """Span used for RVA containment: the larger of virtual and raw size."""
        return max(self.virtual_size, self.size_of_raw_data)

    def contains(self, rva: int) -> bool:
        return self.virtual_address <= rva < self.virtual_address + self.virtual_extent

    @property
    def is_executable(self) -> bool:
        return bool(self.characteristics & IMAGE_SCN_MEM_EXECUTE)

    @property
    def flags(self) -> str:
        """Characteristics rendered as a short string such as ``"R X CODE"``."""
        parts: list[str] = []
        if self.characteristics & IMAGE_SCN_MEM_READ:
            parts.append("R")
        if self.characteristics & IMAGE_SCN_MEM_WRITE:
            parts.append("W")
        if self.characteristics & IMAGE_SCN_MEM_EXECUTE:
            parts.append("X")
        if self.characteristics & IMAGE_SCN_CNT_CODE:
            parts.append("CODE")
        if self.characteristics & IMAGE_SCN_CNT_INITIALIZED_DATA:
            parts.append("IDATA")
        if self.characteristics & IMAGE_SCN_CNT_UNINITIALIZED_DATA:
            parts.append("UDATA")
        return " ".join(parts) if parts else "-"


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------

class ImportByOrdinal(_Frozen):
    """A thunk whose ordinal flag is set: the symbol is imported by number.

    Attributes:
        ordinal: Low 16 bits of the thunk value.
        thunk_rva: RVA of the slot in the import address table.
        raw_value: The undecoded thunk value.
    """
    kind: Literal["ordinal"] = "ordinal"
    ordinal: int
    thunk_rva: int = 0
    raw_value: int = 0


class ImportByName(_Frozen):
    """A thunk pointing at an ``IMAGE_IMPORT_BY_NAME`` hint/name pair."""
    kind: Literal["name"] = "name"
    hint: int
    name: str
    hint_name_rva: int = 0
    thunk_rva: int = 0
    raw_value: int = 0


ImportThunk = Annotated[
    Union[ImportByOrdinal, ImportByName],
    Field(discriminator="kind"),
]


class ImportDescriptor(_Frozen):
    """One ``IMAGE_IMPORT_DESCRIPTOR``: the imports from a single module.

    Attributes:
        original_first_thunk: RVA of the import lookup table.
        first_thunk: RVA of the import address table.
        name: Module name resolved from *name_rva*, ``None`` if unreadable.
        thunks: Decoded lookup entries, in table order.
        thunks_truncated: The thunk array ran off the buffer or hit the
            configured limit before its zero terminator.
    """
    original_first_thunk: int
    time_date_stamp: int
    forwarder_chain: int
    name_rva: int
    first_thunk: int
    name: Optional[str] = None
    thunks: list[ImportThunk] = Field(default_factory=list)
    thunks_truncated: bool = False

    @property
    def is_bound(self) -> bool:
        return self.time_date_stamp != 0

    @property
    def thunk_table_rva(self) -> int:
        """The table walked for thunks: lookup table, else address table."""
        return self.original_first_thunk or self.first_thunk


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

class ExportSymbol(_Frozen):
    """A single exported function.

    Attributes:
        ordinal: Export ordinal (address table index plus ordinal base).
        rva: RVA from the export address table.
        name: Exported name, ``None`` for ordinal-only exports.
        forwarder: ``"MODULE.Symbol"`` when *rva* points inside the export
            directory itself, otherwise ``None``.
    """
    ordinal: int
    rva: int
    name: Optional[str] = None
    forwarder: Optional[str] = None


class ExportDirectory(_Frozen):
    """``IMAGE_EXPORT_DIRECTORY`` plus its walked symbol tables."""
    characteristics: int
    time_date_stamp: int
    major_version: int
    minor_version: int
    name_rva: int
    name: Optional[str] = None
    base: int
    number_of_functions: int
    number_of_names: int
    address_of_functions: int
    address_of_names: int
    address_of_name_ordinals: int
    symbols: list[ExportSymbol] = Field(default_factory=list)

    @property
    def timestamp(self) -> Optional[datetime]:
        return _utc_timestamp(self.time_date_stamp)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

class ParseWarning(_Frozen):
    """A non-fatal condition met while decoding.

    Attributes:
        kind: Class of the condition.
        stage: Decoder stage that recorded it.
        offset: Buffer offset involved, if known.
        message: Human-readable description.
    """
    kind: WarningKind
    stage: str
    offset: Optional[int] = None
    message: str


# ---------------------------------------------------------------------------
# Aggregate document
# ---------------------------------------------------------------------------

class PeDocument(_Frozen):
    """The complete decoded structure of a PE image.

    Owns every decoded header and table.  Optional tables that were absent
    or unreadable are empty (``imports``) or ``None``
    (``export_directory``); the reason, if any, is in :attr:`warnings`.
    """
    dos_header: DosHeader
    nt_header: NtHeader
    sections: list[SectionHeader] = Field(default_factory=list)
    imports: list[ImportDescriptor] = Field(default_factory=list)
    imports_truncated: bool = False
    export_directory: Optional[ExportDirectory] = None
    warnings: list[ParseWarning] = Field(default_factory=list)

    @property
    def file_header(self) -> FileHeader:
        return self.nt_header.file_header

    @property
    def optional_header(self) -> OptionalHeader:
        return self.nt_header.optional_header

    @property
    def bits(self) -> int:
        return self.optional_header.bitness.bits

    @property
    def is_dll(self) -> bool:
        return self.file_header.is_dll

    @property
    def entry_point(self) -> int:
        return self.optional_header.address_of_entry_point

    @property
    def has_imports(self) -> bool:
        """Whether the image declares a non-empty import directory."""
        directory = self.directory(DirectoryEntry.IMPORT)
        return directory is not None and directory.is_present

    @property
    def has_exports(self) -> bool:
        """Whether the image declares a non-empty export directory."""
        directory = self.directory(DirectoryEntry.EXPORT)
        return directory is not None and directory.is_present

    def directory(self, entry: DirectoryEntry | int) -> Optional[DataDirectory]:
        return self.optional_header.directory(entry)

    def section_by_name(self, name: str) -> Optional[SectionHeader]:
        """Return the first section called *name*, or ``None``."""
        for section in self.sections:
            if section.name == name:
                return section
        return None

    def rva_to_offset(self, rva: int) -> int:
        """Translate *rva* through this document's section table.

        Raises:
            UnmappedRvaError: If no section contains *rva*.
        """
        from strata.parsers.rva import RvaTranslator

        return RvaTranslator(self.sections).translate(rva)
