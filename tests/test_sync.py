"""Tests for the rsync invoker.

Most tests drive a stand-in rsync shell script that writes to the run log
and exits with a chosen status, so no real transfer is needed.
"""

import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from tmbackup.errors import NotABackupDestination, OutOfSpace, SyncFailure
from tmbackup.sync import (
    EXIT_RSYNC_NOT_FOUND,
    SyncInvoker,
    SyncResult,
    detect_out_of_space,
    is_reportable_line,
    shell_exit_status,
)


FAKE_RSYNC = """#!/bin/sh
while [ $# -gt 0 ]; do
    if [ "$1" = "--log-file" ]; then
        shift
        printf '%s\\n' "{log_line}" >> "$1"
    fi
    shift
done
echo "{output_line}"
echo "subdir/"
echo "deleting old.txt"
exit {exit_code}
"""


def write_fake_rsync(
    directory: Path,
    exit_code: int = 0,
    log_line: str = "sent 10 bytes",
    output_line: str = "file.txt",
) -> str:
    script = directory / "fake-rsync"
    script.write_text(
        FAKE_RSYNC.format(exit_code=exit_code, log_line=log_line, output_line=output_line)
    )
    script.chmod(0o755)
    return str(script)


@pytest.fixture
def workspace():
    """Source, marked destination and profile directories."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        source = root / "source"
        dest = root / "dest"
        profile = root / "profile"
        source.mkdir()
        dest.mkdir()
        (dest / "backup.marker").touch()
        (source / "file.txt").write_text("hello")
        yield {"root": root, "source": source, "dest": dest, "profile": profile}


def fixed_clock():
    return datetime(2025, 6, 1, 12, 0, 0)


class TestDetectOutOfSpace:

    @pytest.mark.parametrize("exit_code", [28, 34])
    def test_exit_codes(self, exit_code):
        assert detect_out_of_space(exit_code, "")

    @pytest.mark.parametrize("log_text", [
        'rsync: write failed on "/dest/x": No space left on device (28)',
        'rsync: [receiver] write failed on "/dest/x": Result too large (34)',
    ])
    def test_log_patterns(self, log_text):
        assert detect_out_of_space(11, f"some output\n{log_text}\nmore")

    def test_other_failures(self):
        assert not detect_out_of_space(0, "")
        assert not detect_out_of_space(23, "some files/attrs were not transferred")
        assert not detect_out_of_space(11, "No space left on device")

    def test_log_file_prefix(self):
        line = "2025/06/01 12:00:00 [4242] rsync: write failed on \"x\": No space left on device (28)"
        assert detect_out_of_space(11, line)

    @pytest.mark.parametrize("log_text", [
        ">f+++++++++ No space left on device (28).txt",
        "2025/06/01 12:00:00 [4242] >f+++++++++ notes/Result too large (34).md",
        'rsync: write failed on "x": No space left on device (28)',
    ])
    def test_zero_exit_is_never_out_of_space(self, log_text):
        assert not detect_out_of_space(0, log_text)

    def test_file_names_ignored_on_failure(self):
        log_text = ">f+++++++++ No space left on device (28).txt\nrsync error: some files could not be transferred (code 23)"
        assert not detect_out_of_space(23, log_text)


class TestShellExitStatus:

    def test_normal_exit(self):
        assert shell_exit_status(0) == 0
        assert shell_exit_status(23) == 23

    def test_killed_by_signal(self):
        assert shell_exit_status(-9) == 137
        assert shell_exit_status(-15) == 143


class TestSyncResult:

    def test_success(self):
        result = SyncResult(exit_code=0, out_of_space=False)
        assert result.success
        result.raise_for_status()

    def test_out_of_space_takes_precedence(self):
        result = SyncResult(exit_code=11, out_of_space=True)
        assert not result.success
        with pytest.raises(OutOfSpace):
            result.raise_for_status()

    def test_failure_carries_exit_code(self):
        result = SyncResult(exit_code=23, out_of_space=False)
        with pytest.raises(SyncFailure) as exc_info:
            result.raise_for_status()
        assert exc_info.value.exit_code == 23
        assert "23" in str(exc_info.value)


class TestBuildCommand:

    def test_required_flags(self):
        invoker = SyncInvoker(profile_dir=Path("/tmp/profile"))
        cmd = invoker.build_command(
            Path("/src"), Path("/dest/2025-06-01-120000"), Path("/tmp/profile/x.log")
        )

        assert cmd[0] == "rsync"
        for flag in ["--compress", "--numeric-ids", "--links", "--hard-links",
                     "--delete", "--delete-excluded", "--archive",
                     "--itemize-changes", "--verbose"]:
            assert flag in cmd
        assert cmd[cmd.index("--log-file") + 1] == "/tmp/profile/x.log"
        assert not any(arg.startswith("--link-dest") for arg in cmd)
        assert cmd[-3:] == ["--", "/src/", "/dest/2025-06-01-120000/"]

    def test_link_dest_is_absolute(self):
        invoker = SyncInvoker(profile_dir=Path("/tmp/profile"))
        cmd = invoker.build_command(
            Path("/src"), Path("/dest/new"), Path("/tmp/x.log"),
            link_base=Path("relative/2025-01-01-000000"),
        )

        link_args = [arg for arg in cmd if arg.startswith("--link-dest=")]
        assert link_args == [f"--link-dest={os.path.abspath('relative/2025-01-01-000000')}"]
        assert cmd.index(link_args[0]) < cmd.index("--")

    def test_filter_files(self):
        invoker = SyncInvoker(profile_dir=Path("/tmp/profile"))
        cmd = invoker.build_command(
            Path("/src"), Path("/dest/new"), Path("/tmp/x.log"),
            include_file=Path("/etc/inc.txt"),
            exclude_file=Path("/etc/exc.txt"),
        )

        assert cmd[cmd.index("--include-from") + 1] == "/etc/inc.txt"
        assert cmd[cmd.index("--exclude-from") + 1] == "/etc/exc.txt"

    def test_paths_are_single_arguments(self):
        """Spaces and shell metacharacters reach rsync untouched."""
        invoker = SyncInvoker(profile_dir=Path("/tmp/profile"))
        source = Path("/my files/$(rm -rf ~)")
        cmd = invoker.build_command(source, Path("/dest/new"), Path("/tmp/x.log"))

        assert "/my files/$(rm -rf ~)/" in cmd

    def test_config_options(self):
        invoker = SyncInvoker(
            profile_dir=Path("/tmp/profile"),
            rsync_path="/opt/bin/rsync",
            compress=False,
            extra_args=["--one-file-system"],
        )
        cmd = invoker.build_command(Path("/src"), Path("/dest/new"), Path("/tmp/x.log"))

        assert cmd[0] == "/opt/bin/rsync"
        assert "--compress" not in cmd
        assert "--one-file-system" in cmd

    def test_trailing_slashes_not_doubled(self):
        invoker = SyncInvoker(profile_dir=Path("/tmp/profile"))
        cmd = invoker.build_command("/src/", "/dest/new/", Path("/tmp/x.log"))
        assert cmd[-2:] == ["/src/", "/dest/new/"]


class TestRunSync:

    def test_success(self, workspace):
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=write_fake_rsync(workspace["root"]),
            now=fixed_clock,
        )
        target = workspace["dest"] / "2025-06-01-120000"

        result = invoker.run_sync(workspace["source"], target)

        assert result.exit_code == 0
        assert not result.out_of_space
        assert result.success
        assert target.is_dir()
        assert workspace["profile"].is_dir()
        assert (workspace["dest"] / "backup.inprogress").exists()
        assert "sent 10 bytes" in result.log_text

    def test_run_log_is_deleted(self, workspace):
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=write_fake_rsync(workspace["root"], exit_code=23),
            now=fixed_clock,
        )

        invoker.run_sync(workspace["source"], workspace["dest"] / "2025-06-01-120000")

        assert list(workspace["profile"].iterdir()) == []

    def test_out_of_space_from_log(self, workspace):
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=write_fake_rsync(
                workspace["root"],
                exit_code=11,
                log_line='rsync: write failed on "x": No space left on device (28)',
            ),
            now=fixed_clock,
        )

        result = invoker.run_sync(workspace["source"], workspace["dest"] / "2025-06-01-120000")

        assert result.exit_code == 11
        assert result.out_of_space

    def test_file_named_like_error_on_success(self, workspace):
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=write_fake_rsync(
                workspace["root"],
                log_line=">f+++++++++ No space left on device (28).txt",
                output_line=">f+++++++++ No space left on device (28).txt",
            ),
            now=fixed_clock,
        )

        result = invoker.run_sync(workspace["source"], workspace["dest"] / "2025-06-01-120000")

        assert result.exit_code == 0
        assert not result.out_of_space
        assert result.success

    def test_killed_rsync_reports_shell_status(self, workspace):
        script = workspace["root"] / "killed-rsync"
        script.write_text("#!/bin/sh\nkill -9 $$\n")
        script.chmod(0o755)
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=str(script),
            now=fixed_clock,
        )

        result = invoker.run_sync(workspace["source"], workspace["dest"] / "2025-06-01-120000")

        assert result.exit_code == 137
        assert not result.out_of_space

    def test_out_of_space_from_exit_code(self, workspace):
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=write_fake_rsync(workspace["root"], exit_code=28),
            now=fixed_clock,
        )

        result = invoker.run_sync(workspace["source"], workspace["dest"] / "2025-06-01-120000")

        assert result.out_of_space

    def test_failure_exit_code(self, workspace):
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=write_fake_rsync(workspace["root"], exit_code=23),
            now=fixed_clock,
        )

        result = invoker.run_sync(workspace["source"], workspace["dest"] / "2025-06-01-120000")

        assert result.exit_code == 23
        assert not result.out_of_space
        # Marker stays so the next run resumes
        assert (workspace["dest"] / "backup.inprogress").exists()

    def test_missing_rsync(self, workspace):
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=str(workspace["root"] / "no-such-rsync"),
            now=fixed_clock,
        )

        with pytest.raises(SyncFailure) as exc_info:
            invoker.run_sync(workspace["source"], workspace["dest"] / "2025-06-01-120000")

        assert exc_info.value.exit_code == EXIT_RSYNC_NOT_FOUND

    def test_requires_marker_file(self, workspace):
        (workspace["dest"] / "backup.marker").unlink()
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=write_fake_rsync(workspace["root"]),
            now=fixed_clock,
        )
        target = workspace["dest"] / "2025-06-01-120000"

        with pytest.raises(NotABackupDestination):
            invoker.run_sync(workspace["source"], target)

        assert not target.exists()
        assert not (workspace["dest"] / "backup.inprogress").exists()

    def test_output_is_filtered_into_debug_log(self, workspace, caplog):
        invoker = SyncInvoker(
            profile_dir=workspace["profile"],
            rsync_path=write_fake_rsync(workspace["root"]),
            now=fixed_clock,
        )

        with caplog.at_level(logging.DEBUG, logger="tmbackup.sync"):
            invoker.run_sync(workspace["source"], workspace["dest"] / "2025-06-01-120000")

        messages = [r.getMessage() for r in caplog.records]
        assert "rsync: file.txt" in messages
        assert "rsync: deleting old.txt" in messages
        assert "rsync: subdir/" not in messages


class TestInProgressMarker:

    def test_mark_and_clear(self, workspace):
        invoker = SyncInvoker(profile_dir=workspace["profile"])
        marker = invoker.mark_in_progress(workspace["dest"])

        assert marker == workspace["dest"] / "backup.inprogress"
        assert marker.exists()

        invoker.clear_in_progress(workspace["dest"])
        assert not marker.exists()

    def test_clear_requires_marker_file(self, workspace):
        invoker = SyncInvoker(profile_dir=workspace["profile"])
        invoker.mark_in_progress(workspace["dest"])
        (workspace["dest"] / "backup.marker").unlink()

        with pytest.raises(NotABackupDestination):
            invoker.clear_in_progress(workspace["dest"])

        assert (workspace["dest"] / "backup.inprogress").exists()


class TestReportableLines:

    @pytest.mark.parametrize("line,expected", [
        (">f+++++++++ file.txt", True),
        ("cd+++++++++ subdir/", False),
        ("deleting old/", True),
        ("", False),
    ])
    def test_filter(self, line, expected):
        assert is_reportable_line(line) is expected


@pytest.mark.skipif(shutil.which("rsync") is None, reason="rsync not installed")
class TestRealRsync:

    def test_copies_and_links(self, workspace):
        invoker = SyncInvoker(profile_dir=workspace["profile"], now=fixed_clock)
        first = workspace["dest"] / "2025-06-01-110000"
        second = workspace["dest"] / "2025-06-01-120000"

        assert invoker.run_sync(workspace["source"], first).success
        assert invoker.run_sync(workspace["source"], second, link_base=first).success

        assert (second / "file.txt").read_text() == "hello"
        assert (second / "file.txt").stat().st_ino == (first / "file.txt").stat().st_ino
