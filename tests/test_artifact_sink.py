import os
import time

import pytest

from conftest import FakeProvider
from storage.artifact_sink import TRUNCATION_NOTICE, ArtifactSink, RecordingProvider


@pytest.mark.asyncio
async def test_disabled_sink_writes_nothing(tmp_path):
    sink = ArtifactSink(str(tmp_path / "raw"), enabled=False)
    assert await sink.record("planner", "s1", "text") is None
    assert not (tmp_path / "raw").exists()


@pytest.mark.asyncio
async def test_record_writes_sanitized_file(tmp_path):
    sink = ArtifactSink(str(tmp_path), enabled=True)
    path = await sink.record("act1/polish", "s1", "raw response")
    assert os.path.basename(path).startswith("llm_raw_act1_polish_s1_")
    with open(path, encoding="utf-8") as f:
        assert f.read() == "raw response"
    assert await sink.record("planner", "s1", "") is None


@pytest.mark.asyncio
async def test_record_truncates_long_text(tmp_path):
    sink = ArtifactSink(str(tmp_path), enabled=True, max_chars=10)
    path = await sink.record("planner", "s1", "0123456789abcdef")
    with open(path, encoding="utf-8") as f:
        assert f.read() == "0123456789" + TRUNCATION_NOTICE


@pytest.mark.asyncio
async def test_write_failure_is_logged_not_raised(tmp_path):
    blocked = tmp_path / "blocked"
    blocked.write_text("not a directory")
    sink = ArtifactSink(str(blocked), enabled=True)
    assert await sink.record("planner", "s1", "text") is None


def test_rotate_removes_expired_files(tmp_path):
    old = tmp_path / "old.txt"
    fresh = tmp_path / "fresh.txt"
    old.write_text("a")
    fresh.write_text("b")
    stale = time.time() - 10 * 86400
    os.utime(old, (stale, stale))
    sink = ArtifactSink(str(tmp_path), enabled=True, retention_days=7)
    assert sink.rotate() == 1
    assert not old.exists()
    assert fresh.exists()
    assert ArtifactSink(str(tmp_path / "missing")).rotate() == 0


@pytest.mark.asyncio
async def test_recording_provider_passes_text_through(tmp_path):
    inner = FakeProvider({"planner": "plan text"})
    sink = ArtifactSink(str(tmp_path), enabled=True)
    provider = RecordingProvider(inner, sink, "s9")
    text = await provider.call("sys", "user", temperature=0.5, stage="planner")
    assert text == "plan text"
    assert inner.calls[0]["temperature"] == 0.5
    files = os.listdir(tmp_path)
    assert len(files) == 1
    assert files[0].startswith("llm_raw_planner_s9_")


@pytest.mark.asyncio
async def test_unencodable_text_is_written_with_replacement(tmp_path):
    sink = ArtifactSink(str(tmp_path), enabled=True)
    path = await sink.record("planner", "s1", "bad \ud800 text")
    with open(path, encoding="utf-8") as f:
        assert f.read() == "bad ? text"


@pytest.mark.asyncio
async def test_recording_provider_survives_sink_failure(tmp_path, monkeypatch):
    sink = ArtifactSink(str(tmp_path), enabled=True)

    def broken_write(*_args):
        raise RuntimeError("disk gremlin")

    monkeypatch.setattr(sink, "_record_sync", broken_write)
    provider = RecordingProvider(FakeProvider({"planner": "plan text"}), sink, "s2")
    assert await provider.call("sys", "user", temperature=0.5, stage="planner") == "plan text"
    assert os.listdir(tmp_path) == []
