"""Source context for local stack frames."""

from envelope_relay.contextlines import add_context_lines, apply_source_context, snip_line


def _source(tmp_path, count=20):
    path = tmp_path / "app.py"
    path.write_text("\n".join(f"line {n}" for n in range(1, count + 1)) + "\n")
    return path


def test_context_around_line(tmp_path):
    path = _source(tmp_path)
    stacktrace = {"frames": [{"filename": str(path), "lineno": 10, "function": "handler"}]}
    frame = apply_source_context(stacktrace)["frames"][0]
    assert frame["pre_context"] == ["line 5", "line 6", "line 7", "line 8", "line 9"]
    assert frame["context_line"] == "line 10"
    assert frame["post_context"] == ["line 11", "line 12", "line 13", "line 14", "line 15"]
    assert frame["function"] == "handler"


def test_context_is_clamped_at_file_edges(tmp_path):
    path = _source(tmp_path, count=3)
    frame = {"filename": str(path), "lineno": 1}
    apply_source_context({"frames": [frame]})
    assert frame["pre_context"] == []
    assert frame["context_line"] == "line 1"
    assert frame["post_context"] == ["line 2", "line 3", ""]

    past_end = {"filename": str(path), "lineno": 99}
    apply_source_context({"frames": [past_end]})
    assert past_end["context_line"] == ""


def test_skipped_frames(tmp_path):
    path = _source(tmp_path)
    frames = [
        {"filename": "http://localhost:3000/static/app.js", "lineno": 1, "colno": 5},
        {"filename": f"{tmp_path}/node_modules/lib/index.js", "lineno": 1},
        {"filename": str(tmp_path / "missing.py"), "lineno": 1},
        {"filename": str(path)},
        "not a frame",
    ]
    result = apply_source_context({"frames": [dict(f) if isinstance(f, dict) else f for f in frames]})
    assert result["frames"] == frames


def test_snip_line():
    assert snip_line("short", 3) == "short"
    long = "x" * 100 + "TARGET" + "y" * 200
    snipped = snip_line(long, 100)
    assert snipped.startswith("{snip} ")
    assert snipped.endswith(" {snip}")
    assert "TARGET" in snipped
    assert len(snipped) == 140 + len("{snip} ") + len(" {snip}")
    assert not snip_line("a" * 200, 0).startswith("{snip}")


def test_add_context_lines_ignores_empty_source():
    frame = {"filename": "x.py", "lineno": 3}
    add_context_lines([], frame)
    assert "context_line" not in frame
