import json
import logging

import pytest

from mcp_mermaid_live.errors import (
    EngineUnavailableError,
    InvalidRequestError,
    RenderEngineError,
    error_envelope,
)
from mcp_mermaid_live.settings import Settings
from mcp_mermaid_live.utils.logging import ExtraJSONFormatter, preview, source_fields


@pytest.fixture()
def clean_env(monkeypatch):
    for name in (
        "MERMAID_CLI",
        "MERMAID_DEBOUNCE_MS",
        "MERMAID_RENDER_TIMEOUT",
        "MERMAID_EXPORT_FILL",
        "MERMAID_EXPORT_DIR",
        "MERMAID_PREFS_PATH",
        "LOG_VERBOSE_INPUTS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_settings_from_env(clean_env, tmp_path):
    clean_env.setenv("MERMAID_CLI", "npx -y @mermaid-js/mermaid-cli")
    clean_env.setenv("MERMAID_DEBOUNCE_MS", "250")
    clean_env.setenv("MERMAID_RENDER_TIMEOUT", "5")
    clean_env.setenv("MERMAID_EXPORT_FILL", "#000000")
    clean_env.setenv("MERMAID_EXPORT_DIR", str(tmp_path))
    clean_env.setenv("MERMAID_PREFS_PATH", str(tmp_path / "prefs.json"))
    s = Settings.from_env()
    assert s.mermaid_cli == ["npx", "-y", "@mermaid-js/mermaid-cli"]
    assert s.debounce_ms == 250.0
    assert s.debounce_seconds == 0.25
    assert s.render_timeout == 5.0
    assert s.export_fill == "#000000"
    assert s.export_dir == str(tmp_path)
    assert s.prefs_path == str(tmp_path / "prefs.json")


def test_settings_defaults(clean_env):
    clean_env.setenv("MERMAID_DEBOUNCE_MS", "soon")
    s = Settings.from_env()
    assert s.debounce_ms == 400.0
    assert s.export_dir is None
    assert s.mermaid_cli
    assert s.prefs_path.endswith("preferences.json")


def test_negative_debounce_is_zero():
    assert Settings(debounce_ms=-5).debounce_seconds == 0.0


def test_formatter_appends_extras_as_json():
    record = logging.LogRecord("mcp.mermaid.test", logging.INFO, __file__, 1, "render.ok", None, None)
    record.generation = 3
    record.kind = "unterminated_delimiter"
    line = ExtraJSONFormatter().format(record)
    head, extras = line.rsplit(" | ", 1)
    assert head.endswith(" | INFO | mcp.mermaid.test | render.ok")
    assert json.loads(extras) == {"generation": 3, "kind": "unterminated_delimiter"}


def test_formatter_without_extras():
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "plain %s", ("msg",), None)
    assert ExtraJSONFormatter().format(record).endswith(" | WARNING | x | plain msg")


def test_source_fields(clean_env):
    fields = source_fields("flowchart LR\nA-->B")
    assert fields["source_len"] == 18
    assert fields["source_lines"] == 2
    assert "source" not in fields
    clean_env.setenv("LOG_VERBOSE_INPUTS", "1")
    assert source_fields("graph TD")["source"] == "graph TD"


def test_preview_truncates():
    assert preview("x" * 50, 30).endswith("... <truncated>")
    assert preview(b"abc") == "abc"


def test_error_envelopes():
    assert error_envelope(RenderEngineError("bad", line=2)) == {
        "error": {"code": "E_RENDER", "message": "bad", "data": {"line": 2}}
    }
    assert error_envelope(EngineUnavailableError("no mmdc"))["error"]["code"] == "E_ENGINE_UNAVAILABLE"
    assert error_envelope(ValueError("nope"))["error"] == InvalidRequestError("nope").to_dict()
    internal = error_envelope(RuntimeError("kaboom"))["error"]
    assert internal["code"] == "E_INTERNAL"
    assert internal["data"] == {"original_error": "kaboom"}
