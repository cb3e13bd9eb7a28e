"""
tests/test_store_client.py — Best-effort persistent stores
"""
from __future__ import annotations

import pytest

from app.clients.store_client import JsonFileStore, NullStore, build_store


@pytest.mark.asyncio
async def test_null_store_saves_nothing():
    assert await NullStore().save({"kind": "question"}) is None


@pytest.mark.asyncio
async def test_json_file_store_appends_records_per_kind(tmp_path):
    store = JsonFileStore(tmp_path / "records")
    first = await store.save({"kind": "question", "text": "Q1?"})
    await store.save({"kind": "question", "text": "Q2?"})
    await store.save({"kind": "feedback", "content": "ok"})

    assert first is not None and "record_id" in first
    assert [r["text"] for r in store.read_records("question")] == ["Q1?", "Q2?"]
    assert len(store.read_records("feedback")) == 1
    assert store.read_records("missing") == []


@pytest.mark.asyncio
async def test_json_file_store_unwritable_returns_none(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    store = JsonFileStore(blocker)
    assert await store.save({"kind": "question"}) is None


def test_build_store_selects_implementation(tmp_path):
    assert isinstance(build_store(""), NullStore)
    store = build_store(str(tmp_path))
    assert isinstance(store, JsonFileStore)
    assert store.base_dir == tmp_path


@pytest.mark.asyncio
async def test_recent_is_newest_first_per_user(tmp_path):
    store = JsonFileStore(tmp_path)
    for user_id, content in [(7, "first"), (8, "other user"), (7, "second"), (7, "third")]:
        await store.save({"kind": "feedback", "user_id": user_id, "content": content})

    assert [r["content"] for r in await store.recent("feedback", user_id=7)] == [
        "third", "second", "first",
    ]
    assert [r["content"] for r in await store.recent("feedback", user_id=7, limit=1)] == ["third"]
    assert len(await store.recent("feedback")) == 4
    assert await store.recent("question") == []


@pytest.mark.asyncio
async def test_recent_with_corrupt_file_is_empty(tmp_path):
    (tmp_path / "feedback_records.jsonl").write_text("{not json\n", encoding="utf-8")
    assert await JsonFileStore(tmp_path).recent("feedback") == []


@pytest.mark.asyncio
async def test_null_store_has_no_history():
    assert await NullStore().recent("feedback", user_id=1) == []
