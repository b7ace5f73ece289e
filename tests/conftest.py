"""Shared fixtures: synthetic PE images built with :mod:`tests.builder`."""

from __future__ import annotations

import pytest

from shared.config import StrataConfig
from strata.core.engine import StrataEngine

from tests.builder import (
    IDATA_CHARACTERISTICS,
    ImportModule,
    Section,
    build_import_section,
    build_pe,
)

TEXT_RVA = 0x1000
IDATA_RVA = 0x2000
EDATA_RVA = 0x3000


@pytest.fixture
def engine() -> StrataEngine:
    return StrataEngine(config=StrataConfig())


@pytest.fixture
def text_section() -> Section:
    return Section(name=b".text", virtual_address=TEXT_RVA, data=b"\x90" * 15 + b"\xc3")


@pytest.fixture
def minimal_pe32(text_section: Section) -> bytes:
    """MZ header, PE32 optional header, one .text section, no imports/exports."""
    return build_pe([text_section])


@pytest.fixture
def minimal_pe64(text_section: Section) -> bytes:
    return build_pe([text_section], plus=True)


def image_with_imports(
    modules: list[ImportModule],
    *,
    plus: bool = False,
    text: Section | None = None,
) -> bytes:
    """A two-section image whose .idata holds the given import modules."""
    data, directory = build_import_section(IDATA_RVA, modules, plus=plus)
    sections = [
        text or Section(name=b".text", virtual_address=TEXT_RVA, data=b"\xc3"),
        Section(
            name=b".idata",
            virtual_address=IDATA_RVA,
            data=data,
            characteristics=IDATA_CHARACTERISTICS,
        ),
    ]
    return build_pe(sections, plus=plus, directories={1: directory})


@pytest.fixture
def kernel32_user32() -> list[ImportModule]:
    return [
        ImportModule("KERNEL32.dll", ["ExitProcess", "GetModuleHandleA", 17]),
        ImportModule("USER32.dll", ["MessageBoxA"]),
    ]
