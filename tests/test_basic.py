import base64
import json
from pathlib import Path

from typer.testing import CliRunner

from pbap_vcard.cancel import CancellationToken
from pbap_vcard.cli import app
from pbap_vcard.io import read_seed_file, seed_store
from pbap_vcard.model import CallType, Category, OrderKey, Presentation, Selection
from pbap_vcard.sink import FileTransport, StreamSink
from pbap_vcard.store import SqliteRecordSource

SEED = {
    "contacts": [
        {"display_name": "Alice", "given": "Alice", "phones": ["+4412345678"],
         "photo": base64.b64encode(b"\x00\x01").decode()},
        {"display_name": "Bob", "phones": [{"number": "+4487654321", "kind": "WORK"}],
         "addresses": [{"street": "1 Elm St", "locality": "Leeds"}]},
    ],
    "calls": [
        {"number": "+4487654321", "call_type": "outgoing", "timestamp": 200},
        {"number": "", "call_type": "missed", "presentation": "restricted", "timestamp": 100},
    ],
}


def _seed_file(tmp_path: Path) -> Path:
    path = tmp_path / "seed.json"
    path.write_text(json.dumps(SEED), encoding="utf-8")
    return path


def test_read_seed_file(tmp_path: Path):
    contacts, calls = read_seed_file(_seed_file(tmp_path))
    assert [c.display_name for c in contacts] == ["Alice", "Bob"]
    assert contacts[0].photo == b"\x00\x01"
    assert contacts[1].phones[0].kind == "WORK"
    assert contacts[1].addresses[0].locality == "Leeds"
    assert calls[1].call_type is CallType.MISSED
    assert calls[1].presentation is Presentation.RESTRICTED


def test_seed_store_orders_calls_by_time(tmp_path: Path):
    src = SqliteRecordSource()
    assert seed_store(src, _seed_file(tmp_path)) == (2, 2)
    cursor = src.query(Selection.all(Category.COMBINED), OrderKey.NEWEST_FIRST)
    calls = list(cursor)
    cursor.close()
    # The later call gets the larger identity and is listed first.
    assert [c.timestamp for c in calls] == [200, 100]
    assert calls[0].identity > calls[1].identity


def test_cancellation_token_consume():
    token = CancellationToken()
    assert not token.consume()
    token.set()
    assert token.is_set
    assert token.consume()
    assert not token.consume()
    token.set()
    token.clear()
    assert not token.is_set


def test_file_transport(tmp_path: Path):
    out = tmp_path / "nested" / "out.vcf"
    sink = StreamSink(FileTransport(out), owner_vcard="OWNER\n")
    assert sink.on_init()
    assert sink.on_entry_created("CARD\n")
    sink.on_terminate()
    assert out.read_text(encoding="utf-8") == "OWNER\nCARD\n"
    assert sink.entries_written == 1
    assert not sink.on_entry_created("LATE\n")


def test_cli_export(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()
    seed = _seed_file(tmp_path)

    assert runner.invoke(app, ["seed", str(seed)]).exit_code == 0
    size = runner.invoke(app, ["size", "pb"])
    assert size.exit_code == 0
    assert size.output.strip() == "3"

    out = tmp_path / "pb.vcf"
    result = runner.invoke(app, ["export", "pb", "--start", "1", "--end", "2", "--output", str(out)])
    assert result.exit_code == 0
    text = out.read_text(encoding="utf-8")
    assert text.count("BEGIN:VCARD") == 2
    assert "TEL;CELL:+4412345678" in text

    bad = runner.invoke(app, ["export", "pb", "--start", "0", "--end", "2", "--output", str(out)])
    assert bad.exit_code == 1
