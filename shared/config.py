"""
Strata Configuration Management
================================

Centralized configuration for the Strata decoder using Python dataclasses
and TOML-based persistence.

A configuration file is optional and is never looked up implicitly: it is
read only when a path is passed to :meth:`StrataConfig.load`.  Every value
has a default, missing keys fall back to it and unknown keys are ignored,
so the decoder behaves the same with no file at all.

Example ``strata.toml``::

    [global]
    log_level = "DEBUG"
    log_file = "logs/strata.log"
    log_json = true

    [decoder]
    max_import_descriptors = 1024
    walk_export_symbols = false

References:
    - Wiggins, A. (2011). The Twelve-Factor App. https://12factor.net/
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import sys
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ========================== Decoder Limits =================================


@dataclass(frozen=False, slots=True)
class DecoderConfig:
    """Bounds applied to sentinel- and count-terminated tables.

    The decoder already stops at the end of the buffer; these limits cap
    the work spent on a hostile image whose tables are technically in
    bounds but absurdly long.  Hitting a limit truncates the table and
    records a warning.
    """

    max_import_descriptors: int = 4096
    max_thunks_per_descriptor: int = 65_536
    max_total_thunks: int = 1_048_576
    max_export_symbols: int = 65_536
    walk_export_symbols: bool = True

    def __post_init__(self) -> None:
        for limit in (
            "max_import_descriptors",
            "max_thunks_per_descriptor",
            "max_total_thunks",
            "max_export_symbols",
        ):
            value = getattr(self, limit)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(
                    f"decoder.{limit} must be a positive integer, got {value!r}"
                )


# =========================== Global Settings ===============================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Logging settings shared by every Strata component."""

    log_level: str = "WARNING"
    log_file: Optional[str] = None
    log_json: bool = False
    console_output: bool = False
    debug: bool = False

    def __post_init__(self) -> None:
        level = str(self.log_level).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(
                f"global.log_level must be one of {', '.join(_LOG_LEVELS)}, "
                f"got {self.log_level!r}"
            )
        self.log_level = level


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class StrataConfig:
    """Master configuration aggregating decoder and global settings.

    Usage:
        >>> config = StrataConfig.load()                  # defaults
        >>> config = StrataConfig.load("strata.toml")     # from a file
        >>> config.decoder.max_import_descriptors
        4096
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> StrataConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` no file is read and the defaults are returned.

        Args:
            path: Filesystem path to a TOML configuration file.

        Returns:
            A fully-populated :class:`StrataConfig` instance.

        Raises:
            FileNotFoundError: If *path* does not exist.
        """
        if path is None:
            return cls()

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> StrataConfig:
        """Build a configuration from an already-parsed TOML mapping."""
        return cls(
            global_settings=cls._build_section(GlobalConfig, raw.get("global", {})),
            decoder=cls._build_section(DecoderConfig, raw.get("decoder", {})),
        )

    # ------------------------------------------------------------------ #
    #  Serialisation helpers
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        """Serialise the configuration to the mapping :meth:`from_dict` reads.

        Sections use their TOML names, so ``from_dict(to_dict())`` round-trips.
        """
        return {"global": asdict(self.global_settings), "decoder": asdict(self.decoder)}

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares.

        Unknown keys in the TOML source are ignored so that newer config
        files do not break older code.
        """
        declared = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in declared})


# ========================= Module-level convenience ========================

def get_config(path: str | Path | None = None) -> StrataConfig:
    """Module-level convenience wrapper around :meth:`StrataConfig.load`.

    Caches the result so that repeated calls share one instance.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = StrataConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
