"""
Strata -- PE Structural Decoder
================================

Strata decodes Portable Executable (PE/COFF) images from a raw byte buffer
into an immutable, validated in-memory representation: DOS header, NT
headers, data directories, section table, import descriptors with their
thunks, and the export directory with its symbols.

Every offset in a PE image is attacker-controlled.  Strata addresses the
buffer only through bounds-checked reads, clamps every declared count
against the space actually available, and degrades damaged optional tables
to partial results with warnings instead of failing the whole decode.

Usage::

    import strata

    overlay, document = strata.parse(raw_bytes)
    print(document.file_header.machine_name, document.bits)
    for descriptor in document.imports:
        print(descriptor.name, [t.kind for t in descriptor.thunks])

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
    - Pietrek, M. (1994). Peering Inside the PE: A Tour of the Win32
      Portable Executable File Format. Microsoft Systems Journal.
"""

from __future__ import annotations

from shared.config import StrataConfig

from strata.core.engine import StrataEngine
from strata.core.errors import PEFormatError
from strata.core.models import PeDocument
from strata.parsers.cursor import Buffer

__version__ = "1.0.0"
__all__ = [
    "PEFormatError",
    "PeDocument",
    "StrataConfig",
    "StrataEngine",
    "parse",
]


def parse(buffer: Buffer, config: StrataConfig | None = None) -> tuple[bytes, PeDocument]:
    """Decode *buffer* with a default (or the given) configuration.

    See :meth:`StrataEngine.parse`.
    """
    return StrataEngine(config=config).parse(buffer)
