"""Tests for the filesystem session store."""

from __future__ import annotations

import logging

import orjson
import pytest

from benchviz.domain.models import Session
from benchviz.storage import StorageError
from benchviz.storage.file import FileSessionStore


@pytest.fixture
def store(tmp_path):
    return FileSessionStore(tmp_path / "sessions")


@pytest.mark.asyncio
async def test_save_and_load_round_trip(store, session_doc):
    session = Session.model_validate(session_doc)

    stored = await store.save(session)
    loaded = await store.get_one("session-1")

    assert stored is session
    assert loaded is not None
    assert loaded.to_document() == session.to_document()


@pytest.mark.asyncio
async def test_data_dir_created_on_first_use(tmp_path, session_doc):
    data_dir = tmp_path / "nested" / "data"
    store = FileSessionStore(data_dir)
    assert not data_dir.exists()

    await store.save(Session.model_validate(session_doc))

    assert (data_dir / "session-1.json").is_file()


@pytest.mark.asyncio
async def test_file_is_pretty_printed_wire_json(store, session_doc):
    await store.save(Session.model_validate(session_doc))

    raw = (store.data_dir / "session-1.json").read_text()
    assert raw.startswith("{\n  ")
    assert orjson.loads(raw)["customPlots"][0]["plotType"] == "protection-domains"


@pytest.mark.asyncio
async def test_save_is_idempotent_upsert(store, session_doc):
    session = Session.model_validate(session_doc)
    await store.save(session)
    session.name = "Renamed"
    await store.save(session)
    await store.save(session)

    files = sorted(p.name for p in store.data_dir.iterdir())
    all_sessions = await store.get_all()

    assert files == ["session-1.json"]
    assert list(all_sessions) == ["session-1"]
    assert all_sessions["session-1"].name == "Renamed"


@pytest.mark.asyncio
async def test_get_all_skips_corrupt_files(store, session_doc, caplog):
    await store.save(Session.model_validate(session_doc))
    (store.data_dir / "broken.json").write_text("{not json")
    (store.data_dir / "invalid.json").write_text('{"id": "invalid"}')

    with caplog.at_level(logging.WARNING, logger="benchviz.storage.file"):
        sessions = await store.get_all()

    assert list(sessions) == ["session-1"]
    skipped = {
        getattr(rec, "file", None)
        for rec in caplog.records
        if rec.getMessage() == "storage.file.corrupt_record"
    }
    assert skipped == {"broken.json", "invalid.json"}


@pytest.mark.asyncio
async def test_get_all_empty_directory(store):
    assert await store.get_all() == {}


@pytest.mark.asyncio
async def test_get_one_missing_returns_none(store):
    assert await store.get_one("nope") is None


@pytest.mark.asyncio
async def test_get_one_corrupt_raises_storage_error(store):
    store.data_dir.mkdir(parents=True)
    (store.data_dir / "bad.json").write_text("[")

    with pytest.raises(StorageError) as exc_info:
        await store.get_one("bad")
    assert exc_info.value.backend == "file"


@pytest.mark.asyncio
async def test_delete_existing_then_missing(store, session_doc):
    await store.save(Session.model_validate(session_doc))

    first = await store.delete("session-1")
    second = await store.delete("session-1")

    assert first.success is True
    assert second.success is False
    assert second.error == "Session not found"
    assert await store.get_one("session-1") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", ["..", ".", "", "../outside", ".hidden"])
async def test_ids_that_cannot_name_a_file_are_absent(store, session_doc, session_id):
    # A valid document just outside the data directory must stay unreachable.
    (store.data_dir.parent / "outside.json").write_bytes(orjson.dumps(session_doc))

    assert await store.get_one(session_id) is None
    deleted = await store.delete(session_id)
    assert deleted.success is False
    assert deleted.error == "Session not found"
    assert (store.data_dir.parent / "outside.json").is_file()


@pytest.mark.asyncio
async def test_unwritable_directory_raises_storage_error(tmp_path, session_doc):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = FileSessionStore(blocker / "data")

    with pytest.raises(StorageError):
        await store.save(Session.model_validate(session_doc))


@pytest.mark.asyncio
async def test_no_temp_files_left_behind(store, session_doc):
    session = Session.model_validate(session_doc)
    for _ in range(3):
        await store.save(session)

    assert not [p for p in store.data_dir.iterdir() if p.name.endswith(".tmp")]
