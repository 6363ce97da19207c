from pathlib import Path

import pytest

from chrootbuild.core.errors import RewriteError
from chrootbuild.executor.fakechroot import FakechrootExecutor
from chrootbuild.isolation.path_rewriter import relocate, rewrite
from conftest import make_tree


def test_rewrite_is_literal(tmp_path):
    f = tmp_path / "ctl"
    f.write_text("A=/tmp/build.x+[1]/lib B=/tmp/buildAx+[1]/lib\n")
    n = rewrite("/tmp/build.x+[1]/", "/app/", [f])
    assert n == 1
    # '.' and '+' are not wildcards
    assert f.read_text() == "A=/app/lib B=/tmp/buildAx+[1]/lib\n"


def test_round_trip_restores_bytes(tmp_path):
    f = tmp_path / "fakechroot"
    original = b"#!/bin/sh\n/app/.root\x00\xff/app/.tools/usr/lib\n"
    f.write_bytes(original)
    rewrite("/app/", "/tmp/build_8f2/", [f])
    assert b"/tmp/build_8f2/.root" in f.read_bytes()
    rewrite("/tmp/build_8f2/", "/app/", [f])
    assert f.read_bytes() == original


def test_no_occurrence_leaves_file_untouched(tmp_path):
    f = tmp_path / "ctl"
    f.write_text("nothing here\n")
    before = f.stat().st_mtime_ns
    assert rewrite("/app/", "/x/", [f]) == 0
    assert rewrite("/app/", "/x/", [f]) == 0
    assert f.read_text() == "nothing here\n"
    assert f.stat().st_mtime_ns == before


def test_missing_target_is_fatal(tmp_path):
    with pytest.raises(RewriteError) as ei:
        rewrite("/app/", "/x/", [tmp_path / "absent"])
    assert ei.value.code == "rewrite.missing_file"


def test_mode_bits_kept(tmp_path):
    f = tmp_path / "fakeroot"
    f.write_text("/app/x\n")
    f.chmod(0o755)
    rewrite("/app/", "/b/", [f])
    assert f.stat().st_mode & 0o777 == 0o755


def test_relocate_moves_anchor_and_respects_component_boundary(tmp_path):
    layout = make_tree(tmp_path)
    ctl = layout.tools / "etc/fakechroot/chroot.env"
    ctl.write_text(ctl.read_text() + "OTHER=/application/data\n")

    relocate(layout, tmp_path, FakechrootExecutor.control_files)

    assert layout.anchored_at == tmp_path
    assert layout.anchored
    text = ctl.read_text()
    assert f"{tmp_path}/.tools" in text
    assert "/application/data" in text
    assert f"FAKECHROOT_BASE={tmp_path}/.root" in (layout.tools / "usr/bin/fakechroot").read_text()

    relocate(layout, Path("/app"), FakechrootExecutor.control_files)
    assert "FAKECHROOT_BASE=/app/.root" in (layout.tools / "usr/bin/fakechroot").read_text()
    assert not layout.anchored


def test_relocate_rewrites_anchor_at_end_of_value(tmp_path):
    layout = make_tree(tmp_path)
    ctl = layout.tools / "etc/fakechroot/chroot.env"
    ctl.write_text("FAKECHROOT_EXCLUDE_PATH=/dev:/proc:/app\nFAKECHROOT_BASE=/app\nQUOTED='/app'\n")

    relocate(layout, tmp_path, FakechrootExecutor.control_files)

    assert ctl.read_text() == (
        f"FAKECHROOT_EXCLUDE_PATH=/dev:/proc:{tmp_path}\n"
        f"FAKECHROOT_BASE={tmp_path}\n"
        f"QUOTED='{tmp_path}'\n"
    )
    assert "/app" not in ctl.read_text()


def test_relocate_leaves_other_paths_containing_anchor(tmp_path):
    layout = make_tree(tmp_path)
    ctl = layout.tools / "etc/fakechroot/chroot.env"
    ctl.write_text("A=/srv/app/x\nB=/app-data\nC=/app.d\nD=/app\n")
    assert relocate(layout, tmp_path, FakechrootExecutor.control_files) >= 1
    assert ctl.read_text().startswith("A=/srv/app/x\nB=/app-data\nC=/app.d\n")


def test_relocate_round_trip_restores_control_files(tmp_path):
    layout = make_tree(tmp_path)
    (layout.tools / "etc/fakechroot/chroot.env").write_text(
        "FAKECHROOT_EXCLUDE_PATH=/dev:/app:/app/.tools\nFAKECHROOT_BASE=/app\n"
    )
    paths = [layout.tools / rel for rel in FakechrootExecutor.control_files]
    before = [p.read_bytes() for p in paths]

    relocate(layout, tmp_path, FakechrootExecutor.control_files)
    assert layout.anchored
    assert [p.read_bytes() for p in paths] != before

    relocate(layout, Path("/app"), FakechrootExecutor.control_files)
    assert [p.read_bytes() for p in paths] == before


def test_whole_path_replacement_is_literal(tmp_path):
    f = tmp_path / "ctl"
    f.write_text("X=/a.b\nY=/aXb\n")
    assert rewrite("/a.b", r"/n\1", [f], whole_path=True) == 1
    assert f.read_text() == "X=/n\\1\nY=/aXb\n"
