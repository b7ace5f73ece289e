"""
DOS Header Parser
==================

Decodes the 64-byte ``IMAGE_DOS_HEADER`` at the start of every PE image.
Only two fields matter to the loader: the ``MZ`` magic and ``e_lfanew``,
the file offset of the NT headers.  The offset is taken as-is here and
validated by :class:`~strata.parsers.nt_header.NtHeaderParser`.
"""

from __future__ import annotations

from strata.core.errors import InvalidDosMagicError, TruncatedHeaderError
from strata.core.models import DosHeader
from strata.parsers.constants import DOS_HEADER_SIZE, MZ_MAGIC
from strata.parsers.cursor import ByteCursor

# magic, 13 x WORD, e_res[4], e_oemid, e_oeminfo, e_res2[10], e_lfanew
_DOS_HEADER_FMT = "<2s13H8sHH20sI"

STAGE = "dos_header"


class DosHeaderParser:
    """Parse the MS-DOS stub header."""

    def __init__(self, cursor: ByteCursor) -> None:
        self._cursor = cursor

    def parse(self) -> DosHeader:
        """Decode the header at offset 0.

        Raises:
            TruncatedHeaderError: Buffer shorter than 64 bytes.
            InvalidDosMagicError: First two bytes are not ``MZ``.
        """
        if len(self._cursor) < DOS_HEADER_SIZE:
            raise TruncatedHeaderError(
                f"buffer of {len(self._cursor)} byte(s) is shorter than the "
                f"{DOS_HEADER_SIZE}-byte DOS header",
                stage=STAGE,
                offset=0,
            )

        (
            magic,
            e_cblp, e_cp, e_crlc, e_cparhdr, e_minalloc, e_maxalloc,
            e_ss, e_sp, e_csum, e_ip, e_cs, e_lfarlc, e_ovno,
            e_res, e_oemid, e_oeminfo, e_res2, e_lfanew,
        ) = self._cursor.unpack(_DOS_HEADER_FMT, 0)

        if magic != MZ_MAGIC:
            raise InvalidDosMagicError(
                f"expected DOS magic {MZ_MAGIC!r}, found {magic!r}",
                stage=STAGE,
                offset=0,
            )

        return DosHeader(
            e_magic=self._cursor.read_u16(0),
            e_cblp=e_cblp,
            e_cp=e_cp,
            e_crlc=e_crlc,
            e_cparhdr=e_cparhdr,
            e_minalloc=e_minalloc,
            e_maxalloc=e_maxalloc,
            e_ss=e_ss,
            e_sp=e_sp,
            e_csum=e_csum,
            e_ip=e_ip,
            e_cs=e_cs,
            e_lfarlc=e_lfarlc,
            e_ovno=e_ovno,
            e_res=e_res,
            e_oemid=e_oemid,
            e_oeminfo=e_oeminfo,
            e_res2=e_res2,
            e_lfanew=e_lfanew,
        )
