"""
PE/COFF Format Constants
=========================

Magic values, structure sizes, machine codes, characteristics flags and
data directory indices used by the Strata structural decoder.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
      https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Magic numbers
# ---------------------------------------------------------------------------

MZ_MAGIC: bytes = b"MZ"
PE_MAGIC: bytes = b"PE\x00\x00"

# Optional header magic
PE32_MAGIC: int = 0x10B      # PE32 (32-bit)
PE32PLUS_MAGIC: int = 0x20B  # PE32+ (64-bit)
ROM_MAGIC: int = 0x107       # ROM image

# ---------------------------------------------------------------------------
# Structure sizes
# ---------------------------------------------------------------------------

DOS_HEADER_SIZE: int = 64
PE_SIGNATURE_SIZE: int = 4
FILE_HEADER_SIZE: int = 20
SECTION_HEADER_SIZE: int = 40
SECTION_NAME_SIZE: int = 8
DATA_DIRECTORY_SIZE: int = 8
IMPORT_DESCRIPTOR_SIZE: int = 20
EXPORT_DIRECTORY_SIZE: int = 40

# ---------------------------------------------------------------------------
# Machine types
# ---------------------------------------------------------------------------

IMAGE_FILE_MACHINE_UNKNOWN: int = 0x0
IMAGE_FILE_MACHINE_I386: int = 0x14C
IMAGE_FILE_MACHINE_R3000: int = 0x162
IMAGE_FILE_MACHINE_R4000: int = 0x166
IMAGE_FILE_MACHINE_WCEMIPSV2: int = 0x169
IMAGE_FILE_MACHINE_ALPHA: int = 0x184
IMAGE_FILE_MACHINE_SH3: int = 0x1A2
IMAGE_FILE_MACHINE_SH4: int = 0x1A6
IMAGE_FILE_MACHINE_ARM: int = 0x1C0
IMAGE_FILE_MACHINE_THUMB: int = 0x1C2
IMAGE_FILE_MACHINE_ARMNT: int = 0x1C4
IMAGE_FILE_MACHINE_AM33: int = 0x1D3
IMAGE_FILE_MACHINE_POWERPC: int = 0x1F0
IMAGE_FILE_MACHINE_IA64: int = 0x200
IMAGE_FILE_MACHINE_MIPS16: int = 0x266
IMAGE_FILE_MACHINE_ALPHA64: int = 0x284
IMAGE_FILE_MACHINE_EBC: int = 0xEBC
IMAGE_FILE_MACHINE_RISCV32: int = 0x5032
IMAGE_FILE_MACHINE_RISCV64: int = 0x5064
IMAGE_FILE_MACHINE_RISCV128: int = 0x5128
IMAGE_FILE_MACHINE_LOONGARCH32: int = 0x6232
IMAGE_FILE_MACHINE_LOONGARCH64: int = 0x6264
IMAGE_FILE_MACHINE_AMD64: int = 0x8664
IMAGE_FILE_MACHINE_M32R: int = 0x9041
IMAGE_FILE_MACHINE_ARM64: int = 0xAA64

MACHINE_NAMES: dict[int, str] = {
    IMAGE_FILE_MACHINE_UNKNOWN: "Unknown",
    IMAGE_FILE_MACHINE_I386: "x86",
    IMAGE_FILE_MACHINE_R3000: "MIPS R3000",
    IMAGE_FILE_MACHINE_R4000: "MIPS R4000",
    IMAGE_FILE_MACHINE_WCEMIPSV2: "MIPS WCE v2",
    IMAGE_FILE_MACHINE_ALPHA: "Alpha AXP",
    IMAGE_FILE_MACHINE_SH3: "Hitachi SH3",
    IMAGE_FILE_MACHINE_SH4: "Hitachi SH4",
    IMAGE_FILE_MACHINE_ARM: "ARM",
    IMAGE_FILE_MACHINE_THUMB: "ARM Thumb",
    IMAGE_FILE_MACHINE_ARMNT: "ARM Thumb-2",
    IMAGE_FILE_MACHINE_AM33: "Matsushita AM33",
    IMAGE_FILE_MACHINE_POWERPC: "PowerPC",
    IMAGE_FILE_MACHINE_IA64: "IA-64",
    IMAGE_FILE_MACHINE_MIPS16: "MIPS16",
    IMAGE_FILE_MACHINE_ALPHA64: "Alpha 64",
    IMAGE_FILE_MACHINE_EBC: "EFI Byte Code",
    IMAGE_FILE_MACHINE_RISCV32: "RISC-V 32",
    IMAGE_FILE_MACHINE_RISCV64: "RISC-V 64",
    IMAGE_FILE_MACHINE_RISCV128: "RISC-V 128",
    IMAGE_FILE_MACHINE_LOONGARCH32: "LoongArch 32",
    IMAGE_FILE_MACHINE_LOONGARCH64: "LoongArch 64",
    IMAGE_FILE_MACHINE_AMD64: "x86_64",
    IMAGE_FILE_MACHINE_M32R: "Mitsubishi M32R",
    IMAGE_FILE_MACHINE_ARM64: "AArch64",
}

# ---------------------------------------------------------------------------
# Characteristics flags (COFF header)
# ---------------------------------------------------------------------------

IMAGE_FILE_RELOCS_STRIPPED: int = 0x0001
IMAGE_FILE_EXECUTABLE_IMAGE: int = 0x0002
IMAGE_FILE_LINE_NUMS_STRIPPED: int = 0x0004
IMAGE_FILE_LOCAL_SYMS_STRIPPED: int = 0x0008
IMAGE_FILE_LARGE_ADDRESS_AWARE: int = 0x0020
IMAGE_FILE_32BIT_MACHINE: int = 0x0100
IMAGE_FILE_DEBUG_STRIPPED: int = 0x0200
IMAGE_FILE_REMOVABLE_RUN_FROM_SWAP: int = 0x0400
IMAGE_FILE_NET_RUN_FROM_SWAP: int = 0x0800
IMAGE_FILE_SYSTEM: int = 0x1000
IMAGE_FILE_DLL: int = 0x2000
IMAGE_FILE_UP_SYSTEM_ONLY: int = 0x4000

# ---------------------------------------------------------------------------
# Subsystem values
# ---------------------------------------------------------------------------

SUBSYSTEM_NAMES: dict[int, str] = {
    0: "Unknown",
    1: "Native",
    2: "Windows GUI",
    3: "Windows Console",
    5: "OS/2 Console",
    7: "POSIX Console",
    8: "Native Win9x Driver",
    9: "Windows CE GUI",
    10: "EFI Application",
    11: "EFI Boot Service Driver",
    12: "EFI Runtime Driver",
    13: "EFI ROM",
    14: "Xbox",
    16: "Windows Boot Application",
}

# ---------------------------------------------------------------------------
# Section characteristics
# ---------------------------------------------------------------------------

IMAGE_SCN_CNT_CODE: int = 0x00000020
IMAGE_SCN_CNT_INITIALIZED_DATA: int = 0x00000040
IMAGE_SCN_CNT_UNINITIALIZED_DATA: int = 0x00000080
IMAGE_SCN_MEM_DISCARDABLE: int = 0x02000000
IMAGE_SCN_MEM_NOT_CACHED: int = 0x04000000
IMAGE_SCN_MEM_NOT_PAGED: int = 0x08000000
IMAGE_SCN_MEM_SHARED: int = 0x10000000
IMAGE_SCN_MEM_EXECUTE: int = 0x20000000
IMAGE_SCN_MEM_READ: int = 0x40000000
IMAGE_SCN_MEM_WRITE: int = 0x80000000

# ---------------------------------------------------------------------------
# Import thunk flags
# ---------------------------------------------------------------------------

IMAGE_ORDINAL_FLAG32: int = 1 << 31
IMAGE_ORDINAL_FLAG64: int = 1 << 63
HINT_NAME_RVA_MASK: int = 0x7FFFFFFF
ORDINAL_MASK: int = 0xFFFF

# Number of data directory slots defined by the format
IMAGE_NUMBEROF_DIRECTORY_ENTRIES: int = 16
