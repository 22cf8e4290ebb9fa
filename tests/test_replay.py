import hashlib

import pytest

from replayfs.errors import ReplayError, UnsupportedSchemaVersion
from replayfs.eventlog import LogEntry, Operation
from replayfs.replay import FileState, apply_entry, replay

HEADER = '{"type":"header","schema_version":1,"watch_dir":"/tmp/test"}'


def write_blob(blob_dir, content):
    content_hash = hashlib.sha256(content).hexdigest()
    target = blob_dir / content_hash[:2]
    target.mkdir(parents=True, exist_ok=True)
    (target / content_hash).write_bytes(content)
    return content_hash


def write_log(log_path, lines):
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")


def event(seq, elapsed, op, path, content_hash=None, dest=None, size=None):
    parts = [f'"type":"event","seq":{seq},"elapsed_ms":{elapsed},"op":"{op}","path":"{path}"']
    if dest is not None:
        parts.append(f'"dest_path":"{dest}"')
    if content_hash is not None:
        parts.append(f'"content_hash":"{content_hash}"')
    if size is not None:
        parts.append(f'"size":{size}')
    return "{" + ",".join(parts) + "}"


@pytest.fixture
def dirs(tmp_path):
    data_dir = tmp_path / "data"
    blob_dir = data_dir / "blobs"
    blob_dir.mkdir(parents=True)
    return data_dir, blob_dir, tmp_path / "output"


def test_end_to_end_replay_creates_files(dirs):
    data_dir, blob_dir, output = dirs
    h1 = write_blob(blob_dir, b"hello world")
    h2 = write_blob(blob_dir, b"updated content")
    write_log(
        data_dir / "log.ndjson",
        [HEADER, event(1, 10, "create", "a.txt", h1, size=11), event(2, 20, "create", "sub/b.txt", h2, size=15)],
    )
    assert replay(data_dir, output) == 2
    assert (output / "a.txt").read_text() == "hello world"
    assert (output / "sub" / "b.txt").read_text() == "updated content"


def test_replay_handles_modify_and_delete(dirs):
    data_dir, blob_dir, output = dirs
    h1 = write_blob(blob_dir, b"version 1")
    h2 = write_blob(blob_dir, b"version 2")
    write_log(
        data_dir / "log.ndjson",
        [
            HEADER,
            event(1, 10, "create", "file.txt", h1, size=9),
            event(2, 20, "modify", "file.txt", h2, size=9),
            '{"type":"event","seq":3,"elapsed_ms":30,"op":"create","path":"temp.txt","content_hash":null,"size":0}',
            '{"type":"event","seq":4,"elapsed_ms":40,"op":"delete","path":"temp.txt"}',
        ],
    )
    replay(data_dir, output)
    assert (output / "file.txt").read_text() == "version 2"
    assert not (output / "temp.txt").exists()


def test_replay_handles_rename(dirs):
    data_dir, blob_dir, output = dirs
    h1 = write_blob(blob_dir, b"content")
    write_log(
        data_dir / "log.ndjson",
        [HEADER, event(1, 10, "create", "old.txt", h1, size=7), event(2, 20, "rename", "old.txt", dest="new.txt")],
    )
    replay(data_dir, output)
    assert not (output / "old.txt").exists()
    assert (output / "new.txt").read_text() == "content"


def test_replay_until_seq_stops_early(dirs):
    data_dir, blob_dir, output = dirs
    h1 = write_blob(blob_dir, b"first")
    h2 = write_blob(blob_dir, b"second")
    write_log(
        data_dir / "log.ndjson",
        [HEADER, event(1, 10, "create", "a.txt", h1, size=5), event(2, 20, "create", "b.txt", h2, size=6)],
    )
    assert replay(data_dir, output, until_seq=1) == 1
    assert (output / "a.txt").exists()
    assert not (output / "b.txt").exists()


def test_replay_until_ms_stops_early(dirs):
    data_dir, blob_dir, output = dirs
    h1 = write_blob(blob_dir, b"first")
    h2 = write_blob(blob_dir, b"second")
    write_log(
        data_dir / "log.ndjson",
        [HEADER, event(1, 10, "create", "a.txt", h1), event(2, 20, "create", "b.txt", h2)],
    )
    assert replay(data_dir, output, until_ms=15) == 1
    assert (output / "a.txt").read_text() == "first"
    assert not (output / "b.txt").exists()


def test_replay_rejects_future_schema_version(dirs):
    data_dir, _, output = dirs
    write_log(data_dir / "log.ndjson", ['{"type":"header","schema_version":99,"watch_dir":"/tmp/test"}'])
    with pytest.raises(UnsupportedSchemaVersion) as info:
        replay(data_dir, output)
    assert "schema version" in str(info.value)
    assert info.value.version == 99


def test_realtime_rename_and_delete(dirs):
    data_dir, blob_dir, output = dirs
    h1 = write_blob(blob_dir, b"moving")
    h2 = write_blob(blob_dir, b"doomed")
    write_log(
        data_dir / "log.ndjson",
        [
            HEADER,
            event(1, 0, "create", "old.txt", h1),
            event(2, 5, "rename", "old.txt", dest="dir/new.txt"),
            event(3, 10, "create", "gone.txt", h2),
            event(4, 15, "delete", "gone.txt"),
        ],
    )
    assert replay(data_dir, output, realtime=True) == 4
    assert not (output / "old.txt").exists()
    assert (output / "dir" / "new.txt").read_text() == "moving"
    assert not (output / "gone.txt").exists()


def test_file_blocking_directory_is_replaced(dirs):
    data_dir, blob_dir, output = dirs
    h1 = write_blob(blob_dir, b"plain file")
    h2 = write_blob(blob_dir, b"nested")
    write_log(
        data_dir / "log.ndjson",
        [HEADER, event(1, 1, "create", "a", h1), event(2, 2, "create", "a/b", h2)],
    )
    replay(data_dir, output)
    assert (output / "a").is_dir()
    assert (output / "a" / "b").read_text() == "nested"


def test_missing_blob_warns_and_skips(dirs, capsys):
    data_dir, _, output = dirs
    missing = "ab" + "0" * 62
    write_log(data_dir / "log.ndjson", [HEADER, event(1, 1, "create", "x.txt", missing)])
    assert replay(data_dir, output) == 1
    assert not (output / "x.txt").exists()
    err = capsys.readouterr().err
    assert "blob missing for x.txt" in err


def test_blank_lines_are_skipped_and_summary_printed(dirs, capsys):
    data_dir, blob_dir, output = dirs
    h1 = write_blob(blob_dir, b"one")
    write_log(data_dir / "log.ndjson", [HEADER, "", "   ", event(1, 1, "create", "one.txt", h1)])
    assert replay(data_dir, output) == 1
    out = capsys.readouterr().out
    assert "replaying log (schema v1, watched: /tmp/test)" in out
    assert "replayed 1 events into" in out


def test_missing_log(tmp_path):
    with pytest.raises(ReplayError) as info:
        replay(tmp_path / "nothing", tmp_path / "out")
    assert "failed to open log" in str(info.value)


def test_empty_log(dirs):
    data_dir, _, output = dirs
    (data_dir / "log.ndjson").write_text("")
    with pytest.raises(ReplayError) as info:
        replay(data_dir, output)
    assert str(info.value) == "log file is empty"


def test_first_line_must_be_header(dirs):
    data_dir, _, output = dirs
    write_log(data_dir / "log.ndjson", [event(1, 1, "delete", "a")])
    with pytest.raises(ReplayError) as info:
        replay(data_dir, output)
    assert str(info.value) == "expected header as first log line"


def test_bad_entry_is_an_error(dirs):
    data_dir, _, output = dirs
    write_log(data_dir / "log.ndjson", [HEADER, "{broken"])
    with pytest.raises(ReplayError) as info:
        replay(data_dir, output)
    assert str(info.value) == "failed to parse log entry"


def _entry(op, path, dest=None, content_hash=None):
    return LogEntry(seq=1, elapsed_ms=0, op=op, path=path, dest_path=dest, content_hash=content_hash)


def test_apply_rename_falls_back_to_source_hash():
    state = {"a": FileState("h1")}
    apply_entry(state, _entry(Operation.RENAME, "a", dest="b"))
    assert state == {"b": FileState("h1")}


def test_apply_rename_prefers_event_hash():
    state = {"a": FileState("h1")}
    apply_entry(state, _entry(Operation.RENAME, "a", dest="b", content_hash="h2"))
    assert state == {"b": FileState("h2")}


def test_apply_rename_of_unknown_source():
    state = {}
    apply_entry(state, _entry(Operation.RENAME, "a", dest="b"))
    assert state == {"b": FileState(None)}


def test_apply_rename_without_dest_is_ignored():
    state = {"a": FileState("h1")}
    apply_entry(state, _entry(Operation.RENAME, "a"))
    assert state == {"a": FileState("h1")}


def test_apply_create_modify_delete():
    state = {}
    apply_entry(state, _entry(Operation.CREATE, "f", content_hash="h1"))
    apply_entry(state, _entry(Operation.MODIFY, "f", content_hash="h2"))
    assert state == {"f": FileState("h2")}
    apply_entry(state, _entry(Operation.DELETE, "f"))
    apply_entry(state, _entry(Operation.DELETE, "never-there"))
    assert state == {}