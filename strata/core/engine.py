"""
Strata Decode Engine
=====================

Orchestrates the structural decode of a PE image.  Each stage consumes
the output of the one before it, so a single decode is strictly serial:

    1. DOS header            -> ``e_lfanew``
    2. NT headers            -> file header, optional header, data directories
    3. Section table         -> located by ``SizeOfOptionalHeader``
    4. RVA translator        -> built from the finished section table
    5. Import table          -> optional, located through the translator
    6. Export table          -> optional, located through the translator

A failure in stages 1-3 is fatal and propagates as a
:class:`~strata.core.errors.PEFormatError`.  Stages 5 and 6 never abort the
decode: an unresolvable or damaged table is reduced to what could be read
and the reason is attached to :attr:`PeDocument.warnings`.

The engine keeps no per-decode state, so one instance may decode any
number of buffers.  Its logger tracks the current stage, so threads that
decode in parallel should each use their own engine (as :func:`strata.parse`
does).
"""

from __future__ import annotations

from typing import Optional, Sequence

from shared.config import StrataConfig
from shared.logger import StrataLogger

from strata.core.errors import PEFormatError, UnresolvableDirectoryError
from strata.core.models import (
    ExportDirectory,
    ImportDescriptor,
    OptionalHeader,
    ParseWarning,
    PeDocument,
    SectionHeader,
    WarningKind,
)
from strata.parsers.cursor import Buffer, ByteCursor
from strata.parsers.dos_header import DosHeaderParser
from strata.parsers.exports import ExportTableParser
from strata.parsers.imports import ImportTableParser
from strata.parsers.nt_header import NtHeaderParser
from strata.parsers.rva import RvaTranslator
from strata.parsers.section_table import SectionTableParser


class StrataEngine:
    """Decode PE images into :class:`PeDocument` values.

    Usage::

        engine = StrataEngine()
        overlay, document = engine.parse(raw_bytes)
        for descriptor in document.imports:
            print(descriptor.name, len(descriptor.thunks))
    """

    def __init__(
        self,
        config: StrataConfig | None = None,
        logger: StrataLogger | None = None,
    ) -> None:
        """Initialise the engine.

        Args:
            config: Strata configuration.  Defaults are used if not provided.
            logger: Logger instance.  One is built from *config* if not provided.
        """
        self._config: StrataConfig = config or StrataConfig()
        self._logger: StrataLogger = logger or StrataLogger.from_config(
            "engine", self._config.global_settings
        )

    @property
    def config(self) -> StrataConfig:
        return self._config

    # ------------------------------------------------------------------ #
    #  Main entry point
    # ------------------------------------------------------------------ #

    def parse(self, buffer: Buffer) -> tuple[bytes, PeDocument]:
        """Decode *buffer* as a PE image.

        Args:
            buffer: The complete on-disk contents of the image.

        Returns:
            ``(remaining, document)`` where *remaining* is the unconsumed
            suffix of the buffer after the last recognised structure
            (overlay data such as an appended signature), possibly empty.

        Raises:
            PEFormatError: A required header is missing, malformed or
                truncated.  The exception carries the stage and offset.
            TypeError: *buffer* is not bytes-like.
        """
        cursor = ByteCursor(buffer)
        warnings: list[ParseWarning] = []

        with self._logger.timed(f"decode of {len(cursor)} byte(s)"):
            try:
                with self._logger.stage("headers"):
                    dos_header = DosHeaderParser(cursor).parse()
                    nt_parser = NtHeaderParser(cursor, dos_header)
                    nt_header = nt_parser.parse()
                    warnings.extend(nt_parser.warnings)

                    file_header = nt_header.file_header
                    section_parser = SectionTableParser(
                        cursor,
                        nt_parser.section_table_offset(file_header),
                        file_header.number_of_sections,
                    )
                    sections = section_parser.parse()
            except PEFormatError as exc:
                with self._logger.stage(exc.stage):
                    self._logger.error(
                        "Fatal decode error: %s",
                        exc.message,
                        error=type(exc).__name__,
                        offset=exc.offset,
                    )
                raise

            self._logger.debug(
                "Headers decoded: %s %s, %d section(s), %d data directorie(s)",
                file_header.machine_name,
                nt_header.optional_header.bitness.value,
                len(sections),
                len(nt_header.optional_header.data_directories),
            )

            translator = RvaTranslator(sections)
            imports, imports_truncated = self._parse_imports(
                cursor, translator, nt_header.optional_header, warnings
            )
            export_directory = self._parse_exports(
                cursor, translator, nt_header.optional_header, warnings
            )

        for warning in warnings:
            with self._logger.stage(warning.stage):
                self._logger.warning(
                    warning.message, kind=warning.kind.value, offset=warning.offset
                )

        document = PeDocument(
            dos_header=dos_header,
            nt_header=nt_header,
            sections=sections,
            imports=imports,
            imports_truncated=imports_truncated,
            export_directory=export_directory,
            warnings=warnings,
        )

        end = consumed_end(section_parser.end_offset, sections, len(cursor))
        remaining = cursor.suffix(end)

        self._logger.info(
            "Decoded PE%s image: %d section(s), %d import descriptor(s), "
            "%d export(s), %d warning(s), %d overlay byte(s)",
            "32+" if document.bits == 64 else "32",
            len(sections),
            len(imports),
            len(export_directory.symbols) if export_directory else 0,
            len(warnings),
            len(remaining),
        )
        return remaining, document

    # ------------------------------------------------------------------ #
    #  Optional tables
    # ------------------------------------------------------------------ #

    def _parse_imports(
        self,
        cursor: ByteCursor,
        translator: RvaTranslator,
        optional_header: OptionalHeader,
        warnings: list[ParseWarning],
    ) -> tuple[list[ImportDescriptor], bool]:
        limits = self._config.decoder
        parser = ImportTableParser(
            cursor,
            translator,
            optional_header,
            max_descriptors=limits.max_import_descriptors,
            max_thunks=limits.max_thunks_per_descriptor,
            max_total_thunks=limits.max_total_thunks,
        )
        with self._logger.stage("imports"):
            try:
                descriptors = parser.parse()
            except UnresolvableDirectoryError as exc:
                warnings.append(_directory_warning(exc))
                return [], False
            finally:
                warnings.extend(parser.warnings)

            self._logger.debug("Decoded %d import descriptor(s)", len(descriptors))
        return descriptors, parser.truncated

    def _parse_exports(
        self,
        cursor: ByteCursor,
        translator: RvaTranslator,
        optional_header: OptionalHeader,
        warnings: list[ParseWarning],
    ) -> Optional[ExportDirectory]:
        limits = self._config.decoder
        parser = ExportTableParser(
            cursor,
            translator,
            optional_header,
            walk_symbols=limits.walk_export_symbols,
            max_symbols=limits.max_export_symbols,
        )
        with self._logger.stage("exports"):
            try:
                export_directory = parser.parse()
            except UnresolvableDirectoryError as exc:
                warnings.append(_directory_warning(exc))
                return None
            finally:
                warnings.extend(parser.warnings)

            if export_directory is not None:
                self._logger.debug(
                    "Export directory %r: %d symbol(s)",
                    export_directory.name,
                    len(export_directory.symbols),
                )
        return export_directory


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _directory_warning(exc: UnresolvableDirectoryError) -> ParseWarning:
    return ParseWarning(
        kind=WarningKind.DIRECTORY_RESOLUTION,
        stage=exc.stage,
        offset=exc.offset,
        message=exc.message,
    )


def consumed_end(
    section_table_end: int,
    sections: Sequence[SectionHeader],
    buffer_size: int,
) -> int:
    """Offset of the first byte after every recognised structure.

    That is the later of the section table end and the end of the last
    section's raw data, clamped to the buffer.
    """
    end = section_table_end
    for section in sections:
        if section.size_of_raw_data == 0:
            continue
        end = max(end, section.pointer_to_raw_data + section.size_of_raw_data)
    return min(end, buffer_size)
