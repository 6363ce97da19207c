from pathlib import Path

import pytest

from chrootbuild.core.errors import RewriteError
from chrootbuild.core.models import SandboxLayout
from chrootbuild.executor.base import SPAWN_FAILED_EXIT_CODE, TIMEOUT_EXIT_CODE, ExecSpec, Executor
from chrootbuild.executor.fakechroot import FakechrootExecutor
from chrootbuild.executor.ns_chroot import NsChrootExecutor


def test_spawn_merges_output_and_keeps_exit_code(tmp_path):
    res = Executor._spawn(["sh", "-c", "echo out; echo err >&2; exit 3"], cwd=tmp_path, timeout_s=None)
    assert res.exit_code == 3
    assert "out" in res.output and "err" in res.output
    assert not res.ok


def test_spawn_timeout_reports_124(tmp_path):
    res = Executor._spawn(["sh", "-c", "echo started; sleep 5"], cwd=tmp_path, timeout_s=1)
    assert res.timed_out
    assert res.exit_code == TIMEOUT_EXIT_CODE
    assert "TIMEOUT" in res.output


def test_run_refuses_unanchored_sandbox(tmp_path, monkeypatch):
    ex = FakechrootExecutor()
    monkeypatch.setattr(Executor, "_spawn", staticmethod(lambda *a, **k: pytest.fail("spawned")))
    layout = SandboxLayout(base=tmp_path, anchored_at=Path("/app"))
    with pytest.raises(RewriteError) as ei:
        ex.run(layout, "true")
    assert ei.value.code == "sandbox.not_anchored"


def test_run_passes_argv_and_cwd(tmp_path, monkeypatch):
    seen = {}

    def fake_spawn(argv, cwd, timeout_s):
        seen.update(argv=argv, cwd=cwd, timeout_s=timeout_s)
        from chrootbuild.core.models import CommandResult
        return CommandResult(0, "ok")

    monkeypatch.setattr(Executor, "_spawn", staticmethod(fake_spawn))
    ex = FakechrootExecutor(timeout_s=30)
    layout = SandboxLayout(base=tmp_path, anchored_at=tmp_path)
    res = ex.run(layout, "apt-get", ["install", "-y", "libxml2-dev"], workdir=Path("/"), env={"A": "1"})
    assert res.ok
    assert seen["cwd"] == tmp_path
    assert seen["timeout_s"] == 30
    argv = seen["argv"]
    assert argv[0] == str(tmp_path / ".tools/usr/bin/fakechroot")
    assert str(tmp_path / ".root") in argv
    assert "A=1" in argv and "HOME=/root" in argv
    assert argv[-1] == "cd / && exec apt-get install -y libxml2-dev"


def test_fakechroot_excludes_build_dir(tmp_path):
    ex = FakechrootExecutor()
    argv = ex._argv(SandboxLayout(tmp_path, tmp_path), ExecSpec(cmd=["R"], workdir=tmp_path))
    exclude = [a for a in argv if a.startswith("FAKECHROOT_EXCLUDE_PATH=")][0]
    assert exclude.split("=", 1)[1].split(":")[0] == str(tmp_path)


def test_control_files_override():
    ex = FakechrootExecutor(control_files=["usr/bin/fakechroot"])
    assert ex.control_files == ("usr/bin/fakechroot",)
    assert "etc/fakechroot/chroot.env" in FakechrootExecutor.control_files


def test_ns_chroot_has_nothing_to_rewrite(tmp_path):
    ex = NsChrootExecutor()
    assert ex.control_files == ()
    argv = ex._argv(SandboxLayout(tmp_path, tmp_path), ExecSpec(cmd=["Rscript", "x.R"], workdir=tmp_path))
    assert argv[:4] == ["unshare", "--user", "--map-root-user", "--mount"]
    assert f"chroot {tmp_path / '.root'}" in argv[-1]


def test_wrapper_argv_uses_given_base():
    argv = FakechrootExecutor().wrapper_argv(Path("/app"), "Rscript")
    assert argv[0] == "/app/.tools/usr/bin/fakechroot"
    assert argv[-2:] == ["/app/.root", "Rscript"]


def test_spawn_missing_tool_is_a_failed_command(tmp_path):
    res = Executor._spawn([str(tmp_path / "no-such-fakechroot"), "-c", "x"], cwd=tmp_path, timeout_s=None)
    assert res.exit_code == SPAWN_FAILED_EXIT_CODE
    assert not res.ok
    assert "no-such-fakechroot" in res.output


def test_spawn_non_executable_tool_is_a_failed_command(tmp_path):
    tool = tmp_path / "fakechroot"
    tool.write_text("#!/bin/sh\nexit 0\n")
    tool.chmod(0o644)
    res = Executor._spawn([str(tool)], cwd=tmp_path, timeout_s=None)
    assert res.exit_code == SPAWN_FAILED_EXIT_CODE
