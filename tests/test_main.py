from __future__ import annotations

import io
import json
from pathlib import Path
from textwrap import dedent

import pytest

from conftest import FakeTransport
from sheet_notifier import main as main_module
from sheet_notifier.config import load_config


def _write_config(tmp_path: Path) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        dedent(
            f"""
            sheets:
              credentials_file: {tmp_path / "creds.json"}
              spreadsheet_id: sheet-123
            telegram:
              bot_token: "123:abc"
              chat_id: -100500
              bot_username: "@notifier_bot"
            state_path: {tmp_path / "state.sqlite"}
            """
        ),
        encoding="utf-8",
    )
    return config_path


def test_load_config_applies_defaults(tmp_path: Path) -> None:
    config = load_config(_write_config(tmp_path))

    assert config.sheets.intake_sheet_name == "Заявки"
    assert config.sheets.settings_sheet_name == "Настройки"
    assert config.telegram.chat_id == "-100500"
    assert config.timezone == "Europe/Moscow"
    assert config.settings_cache_ttl_seconds == 300


def test_load_config_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(empty)

    broken = tmp_path / "broken.yaml"
    broken.write_text("sheets: {}\ntelegram: {}\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(broken)


@pytest.fixture
def fake_stack(monkeypatch: pytest.MonkeyPatch, reader) -> FakeTransport:
    transport = FakeTransport()
    transport.chat_id = "-100500"
    transport.bot_username = "@notifier_bot"
    monkeypatch.setattr(main_module, "GoogleSheetsClient", lambda conf: reader)
    monkeypatch.setattr(main_module, "TelegramClient", lambda conf: transport)
    return transport


def test_main_dispatches_event_from_stdin(
    tmp_path: Path, fake_stack: FakeTransport, reader, capsys: pytest.CaptureFixture[str]
) -> None:
    reader.set_row("Заявки", 3, ["", "", "Петров"])
    event = {
        "spreadsheetId": "sheet-123",
        "range": {"sheetName": "Заявки", "row": 3, "column": 3},
        "value": "Петров",
    }

    code = main_module.main(
        ["--config", str(_write_config(tmp_path))],
        stdin=io.StringIO(json.dumps(event, ensure_ascii=False)),
    )

    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["outcome"] == "notified"
    assert len(fake_stack.sent) == 1
    assert "Петров" in fake_stack.sent[0][0]


def test_main_reads_event_file(
    tmp_path: Path, fake_stack: FakeTransport, capsys: pytest.CaptureFixture[str]
) -> None:
    event_path = tmp_path / "event.json"
    event_path.write_text(
        json.dumps({"spreadsheetId": "elsewhere", "range": {"sheetName": "Заявки", "row": 3, "column": 3}}),
        encoding="utf-8",
    )

    code = main_module.main(["--config", str(_write_config(tmp_path)), "--event", str(event_path)])

    assert code == 0
    assert json.loads(capsys.readouterr().out)["outcome"] == "ignored"
    assert fake_stack.sent == []


def test_main_rejects_unreadable_event(tmp_path: Path, fake_stack: FakeTransport) -> None:
    code = main_module.main(
        ["--config", str(_write_config(tmp_path))], stdin=io.StringIO("{not json")
    )

    assert code == 2
    assert fake_stack.sent == []


def test_main_test_connection(
    tmp_path: Path, fake_stack: FakeTransport, capsys: pytest.CaptureFixture[str]
) -> None:
    code = main_module.main(["--config", str(_write_config(tmp_path)), "--test-connection"])

    assert code == 0
    assert json.loads(capsys.readouterr().out)["status"] == "sent"
    [(text, parse_mode)] = fake_stack.sent
    assert "ТЕСТ ПОДКЛЮЧЕНИЯ" in text
    assert "@notifier\\_bot" in text
    assert parse_mode == "Markdown"
