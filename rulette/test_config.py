"""
Tests for configuration loading and structured logging.

Run with: pytest test_config.py -v
"""

import json
import logging

import config as config_module
from config import DEFAULT_CARDS_CSV, get_env_bool, get_env_float, get_env_int, reload_config
from logging_config import (
    ContextLogger,
    DevelopmentFormatter,
    JSONFormatter,
    get_logger,
    log_context,
    player_id_var,
    session_id_var,
    setup_logging,
)


# =============================================================================
# Config Tests
# =============================================================================

class TestConfig:

    def test_defaults(self, monkeypatch):
        for key in ("REPLACEMENT_MEMORY_SECONDS", "REPLACEMENT_MAX_ATTEMPTS",
                    "PROMPT_TIME_LIMIT_MS", "STATE_TTL_HOURS", "CARDS_CSV_PATH", "DEBUG"):
            monkeypatch.delenv(key, raising=False)

        cfg = reload_config()

        assert cfg.draw.replacement_memory_seconds == 30.0
        assert cfg.draw.replacement_max_attempts == 3
        assert cfg.prompt.time_limit_ms == 60000
        assert cfg.STATE_TTL_HOURS == 24
        assert cfg.CARDS_CSV_PATH == str(DEFAULT_CARDS_CSV)
        assert cfg.log_level == cfg.LOG_LEVEL
        assert DEFAULT_CARDS_CSV.exists()

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("REPLACEMENT_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("PROMPT_TIME_LIMIT_MS", "1500")
        monkeypatch.setenv("DEBUG", "yes")

        cfg = reload_config()

        assert cfg.draw.replacement_max_attempts == 5
        assert cfg.prompt.time_limit_ms == 1500
        assert cfg.DEBUG is True
        assert cfg.log_level == "DEBUG"
        assert config_module.config is cfg

        monkeypatch.undo()
        reload_config()

    def test_bad_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("X_INT", "many")
        monkeypatch.setenv("X_FLOAT", "lots")
        assert get_env_int("X_INT", 4) == 4
        assert get_env_float("X_FLOAT", 2.5) == 2.5

    def test_bool_parsing(self, monkeypatch):
        monkeypatch.setenv("X_BOOL", "off")
        assert get_env_bool("X_BOOL", True) is False
        monkeypatch.setenv("X_BOOL", "maybe")
        assert get_env_bool("X_BOOL", True) is True


# =============================================================================
# Logging Tests
# =============================================================================

def make_record(level=logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord("rulette.test", level, __file__, 10, "card drawn", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:

    def test_json_formatter_fields(self):
        out = json.loads(JSONFormatter().format(make_record(card_id="c1", deck_type="deckType2")))

        assert out["level"] == "INFO"
        assert out["logger"] == "rulette.test"
        assert out["message"] == "card drawn"
        assert out["card_id"] == "c1"
        assert out["deck_type"] == "deckType2"
        assert "source" not in out

    def test_json_formatter_reads_context_var(self):
        token = session_id_var.set("sess-1234567")
        try:
            out = json.loads(JSONFormatter().format(make_record()))
        finally:
            session_id_var.reset(token)
        assert out["session_id"] == "sess-1234567"

    def test_log_context_binds_and_resets(self):
        with log_context(session_id="s9", player_id="cara"):
            out = json.loads(JSONFormatter().format(make_record()))
        assert out["session_id"] == "s9"
        assert out["player_id"] == "cara"

        assert session_id_var.get() is None
        assert player_id_var.get() is None

    def test_record_extras_win_over_context(self):
        with log_context(player_id="cara"):
            out = json.loads(JSONFormatter().format(make_record(player_id="bob")))
        assert out["player_id"] == "bob"

    def test_json_formatter_errors_carry_source(self):
        out = json.loads(JSONFormatter().format(make_record(level=logging.ERROR)))
        assert out["source"]["line"] == 10

    def test_development_formatter_context(self):
        line = DevelopmentFormatter().format(make_record(session_id="s1", player_id="alice"))
        assert "[session=s1, player=alice]" in line
        assert "card drawn" in line

    def test_context_logger_merges_extra(self, caplog):
        log = get_logger("rulette.test").with_context(session_id="s1")
        assert isinstance(log, ContextLogger)

        with caplog.at_level(logging.INFO, logger="rulette.test"):
            log.with_context(player_id="bob").info("turn over")

        [record] = caplog.records
        assert record.session_id == "s1"
        assert record.player_id == "bob"

    def test_setup_logging_production(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="warning", environment="production")
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)
