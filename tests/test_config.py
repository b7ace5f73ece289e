"""Tests for TOML-backed configuration and the structured logger."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

import strata
from shared.config import DecoderConfig, GlobalConfig, StrataConfig, get_config
from shared.logger import StrataLogger
from strata.core.engine import StrataEngine


class TestStrataConfig:

    def test_defaults(self) -> None:
        config = StrataConfig()
        assert config.global_settings.log_level == "WARNING"
        assert config.global_settings.log_file is None
        assert config.decoder.max_import_descriptors == 4096
        assert config.decoder.max_thunks_per_descriptor == 65_536
        assert config.decoder.max_total_thunks == 1_048_576
        assert config.decoder.max_export_symbols == 65_536
        assert config.decoder.walk_export_symbols

    def test_load_from_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "strata.toml"
        path.write_text(
            '[global]\n'
            'log_level = "DEBUG"\n'
            'log_json = true\n'
            '\n'
            '[decoder]\n'
            'max_import_descriptors = 8\n'
            'walk_export_symbols = false\n',
            encoding="utf-8",
        )
        config = StrataConfig.load(path)
        assert config.global_settings.log_level == "DEBUG"
        assert config.global_settings.log_json
        assert config.decoder.max_import_descriptors == 8
        assert not config.decoder.walk_export_symbols
        assert config.decoder.max_export_symbols == 65_536

    def test_unknown_keys_are_ignored(self) -> None:
        config = StrataConfig.from_dict({
            "decoder": {"max_thunks_per_descriptor": 3, "legacy_option": 1},
            "unrelated": {"x": 1},
        })
        assert config.decoder.max_thunks_per_descriptor == 3
        assert not hasattr(config.decoder, "legacy_option")

    @pytest.mark.parametrize("value", [0, -1, "10", True, 1.5])
    @pytest.mark.parametrize("limit", ["max_export_symbols", "max_total_thunks"])
    def test_decoder_limits_must_be_positive_integers(self, limit, value) -> None:
        with pytest.raises(ValueError, match=limit):
            StrataConfig.from_dict({"decoder": {limit: value}})

    def test_log_level_is_normalised(self) -> None:
        assert GlobalConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValueError, match="log_level"):
            GlobalConfig(log_level="VERBOSE")

    def test_explicit_missing_path_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            StrataConfig.load(tmp_path / "missing.toml")

    def test_load_without_path_reads_no_file(self, tmp_path: Path, monkeypatch) -> None:
        path = tmp_path / "strata.toml"
        path.write_text("[decoder]\nmax_export_symbols = 3\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        assert StrataConfig.load() == StrataConfig()

    def test_to_dict(self) -> None:
        raw = StrataConfig(decoder=DecoderConfig(max_export_symbols=5)).to_dict()
        assert raw["decoder"]["max_export_symbols"] == 5
        assert raw["global"]["console_output"] is False
        assert "global_settings" not in raw

    def test_to_dict_round_trips_through_from_dict(self) -> None:
        config = StrataConfig(
            global_settings=GlobalConfig(log_level="INFO", log_json=True, debug=True),
            decoder=DecoderConfig(max_total_thunks=9, walk_export_symbols=False),
        )
        assert StrataConfig.from_dict(config.to_dict()) == config

    def test_get_config_caches_last_load(self, tmp_path: Path) -> None:
        path = tmp_path / "cached.toml"
        path.write_text("[decoder]\nmax_export_symbols = 7\n", encoding="utf-8")
        loaded = get_config(path)
        assert loaded.decoder.max_export_symbols == 7
        assert get_config() is loaded

    def test_engine_exposes_its_config(self) -> None:
        config = StrataConfig(decoder=DecoderConfig(max_import_descriptors=2))
        assert StrataEngine(config).config is config


class TestStrataLogger:

    def test_library_default_is_silent(self) -> None:
        log = StrataLogger("quiet")
        handlers = log.underlying.handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.NullHandler)
        assert log.underlying.name == "strata.quiet"
        assert log.underlying.propagate

    def test_reinstantiation_does_not_stack_handlers(self, tmp_path: Path) -> None:
        for _ in range(3):
            log = StrataLogger("stacked", log_file=tmp_path / "s.log")
        assert len(log.underlying.handlers) == 1

    def test_distinct_sinks_keep_their_own_handlers(self, tmp_path: Path) -> None:
        first = StrataLogger("sinks", log_file=tmp_path / "a.log")
        second = StrataLogger("sinks", log_file=tmp_path / "b.log")
        quiet = StrataLogger("sinks")
        assert first.underlying is not second.underlying
        assert Path(first.underlying.handlers[0].baseFilename).name == "a.log"
        assert Path(second.underlying.handlers[0].baseFilename).name == "b.log"
        assert quiet.underlying.name == "strata.sinks"

    def test_default_parse_keeps_configured_engine_output(
        self, tmp_path: Path, minimal_pe32: bytes
    ) -> None:
        path = tmp_path / "engine.log"
        settings = GlobalConfig(log_level="INFO", log_file=str(path))
        log = StrataLogger.from_config("engine", settings)
        configured = StrataEngine(StrataConfig(global_settings=settings), logger=log)
        handlers = list(log.underlying.handlers)

        strata.parse(minimal_pe32)
        configured.parse(minimal_pe32)

        assert log.underlying.handlers == handlers
        for handler in handlers:
            handler.flush()
        assert "Decoded PE32 image" in path.read_text(encoding="utf-8")

    def test_json_file_output(self, tmp_path: Path) -> None:
        path = tmp_path / "logs" / "strata.jsonl"
        log = StrataLogger("engine-json", log_level="DEBUG", log_file=path, json_logs=True)
        with log.stage("imports"):
            log.warning("descriptor %d unreadable", 3, offset=0x600)
        log.info("outside")
        for handler in log.underlying.handlers:
            handler.flush()

        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert lines[0]["level"] == "WARNING"
        assert lines[0]["message"] == "descriptor 3 unreadable"
        assert lines[0]["component"] == "engine-json"
        assert lines[0]["stage"] == "imports"
        assert lines[0]["extra"] == {"offset": 0x600}
        assert "stage" not in lines[1]
        assert "extra" not in lines[1]

    def test_level_filters_records(self, tmp_path: Path) -> None:
        path = tmp_path / "plain.log"
        log = StrataLogger("filtered", log_level="ERROR", log_file=path)
        log.warning("dropped")
        log.error("kept")
        for handler in log.underlying.handlers:
            handler.flush()
        text = path.read_text(encoding="utf-8")
        assert "kept" in text
        assert "dropped" not in text
        assert "| filtered/- |" in text

    def test_from_config_debug_overrides_level(self) -> None:
        settings = GlobalConfig(log_level="ERROR", debug=True)
        log = StrataLogger.from_config("debugging", settings)
        assert log.level == logging.DEBUG
        assert log.component == "debugging"

    def test_stage_scope_nests(self) -> None:
        log = StrataLogger("nested")
        with log.stage("outer"):
            with log.stage("inner"):
                assert log.current_stage == "inner"
            assert log.current_stage == "outer"
        assert log.current_stage is None

    def test_stage_restored_after_exception(self) -> None:
        log = StrataLogger("raising")
        with pytest.raises(RuntimeError):
            with log.stage("imports"):
                raise RuntimeError("boom")
        assert log.current_stage is None

    def test_timed_reports_elapsed(self, caplog: pytest.LogCaptureFixture) -> None:
        log = StrataLogger("timer", log_level="DEBUG")
        with caplog.at_level(logging.DEBUG, logger="strata.timer"):
            with log.timed("decode") as timer:
                pass
        assert timer.elapsed >= 0.0
        messages = [r.getMessage() for r in caplog.records]
        assert "decode started" in messages
        assert any(m.startswith("decode finished in ") for m in messages)
        finished = caplog.records[-1]
        assert finished.strata_extra["elapsed_ms"] >= 0.0
