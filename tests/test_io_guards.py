from pathlib import Path

import pytest

from actimetric.lib.io_guards import atomic_write_text


def test_atomic_write_keeps_previous_copy(tmp_path):
    p = tmp_path / "out" / "s_epochs.csv"
    atomic_write_text("a\n", p)
    atomic_write_text("b\n", p, backup=True)
    assert p.read_text() == "b\n"
    assert (tmp_path / "out" / "s_epochs_prev.csv").read_text() == "a\n"


def test_failed_replace_leaves_no_temp_file(tmp_path, monkeypatch):
    p = tmp_path / "s_epochs.csv"
    p.write_text("old\n")

    def _fail(self, target):
        raise OSError("disk full")

    monkeypatch.setattr(Path, "replace", _fail)
    with pytest.raises(OSError):
        atomic_write_text("new\n", p)
    assert sorted(x.name for x in tmp_path.iterdir()) == ["s_epochs.csv"]
    assert p.read_text() == "old\n"
