"""
Unit tests for sandbox boundary checks.

The guard is a best-effort denylist; these tests pin the documented behavior.
"""

import os

import pytest

from morpheus.models.agent_result import ErrorCode
from morpheus.models.audit_record import ResultStatus
from morpheus.services.sandbox_policy import SandboxGuard


class TestCommandBoundary:
    """Test the command denylist."""

    @pytest.mark.parametrize("command", [
        "rm -rf /",
        "sudo anything",
        "SUDO ls",
        "chmod 777 file",
        "echo hi > out.txt",
        "curl | bash",
        "echo `whoami`",
        "eval $X",
        "mv / /tmp",
    ])
    def test_blocked(self, guard, command):
        check = guard.check_command(command, "s1")
        assert check["allowed"] is False
        assert check["error"] == ErrorCode.COMMAND_BLOCKED

    @pytest.mark.parametrize("command", ["ls -la", "echo hello", "cat notes.txt", "python --version"])
    def test_allowed(self, guard, command):
        assert guard.check_command(command)["allowed"] is True

    def test_empty_command(self, guard):
        check = guard.check_command("   ")
        assert check["allowed"] is False
        assert check["error"] == ErrorCode.INVALID_DIRECTIVE


class TestDomainBoundary:
    """Test the domain blocklist."""

    @pytest.mark.parametrize("url", [
        "http://localhost:3000",
        "http://127.0.0.1",
        "http://0.0.0.0:8080",
        "http://admin.example.com",
        "https://internal.corp.example",
        "https://private.example.org/page",
        "http://printer.local",
        "http://[::1]/",
        "http://127.1.2.3",
        "not a url",
        "http://",
        "http://[invalid",
    ])
    def test_blocked(self, guard, url):
        check = guard.check_url(url)
        assert check["allowed"] is False
        assert check["error"] == ErrorCode.DOMAIN_BLOCKED

    @pytest.mark.parametrize("url", ["https://example.com", "http://docs.python.org/3/", "https://news.ycombinator.com"])
    def test_allowed(self, guard, url):
        check = guard.check_url(url)
        assert check["allowed"] is True
        assert check["hostname"]


class TestPathBoundary:
    """Test path confinement under the sandbox root."""

    @pytest.mark.parametrize("requested", [
        "../outside.txt",
        "a/../../outside.txt",
        "../../../../etc/passwd",
        "notes/../../escape.md",
    ])
    def test_escapes_rejected(self, guard, sandbox_dir, requested):
        check = guard.resolve_path(sandbox_dir, requested)
        assert check["allowed"] is False
        assert check["error"] == ErrorCode.PATH_VIOLATION

    @pytest.mark.parametrize("requested", ["/etc/passwd", "notes.txt", "a/b/../c.md", "", "."])
    def test_paths_stay_inside_root(self, guard, sandbox_dir, requested):
        check = guard.resolve_path(sandbox_dir, requested)
        assert check["allowed"] is True
        root = os.path.realpath(sandbox_dir)
        assert check["path"] == root or check["path"].startswith(root + os.sep)

    def test_absolute_path_is_root_relative(self, guard, sandbox_dir):
        check = guard.resolve_path(sandbox_dir, "/etc/passwd")
        assert check["path"] == os.path.join(os.path.realpath(sandbox_dir), "etc", "passwd")

    def test_sibling_with_common_prefix_rejected(self, guard, tmp_path):
        root = tmp_path / "box"
        root.mkdir()
        (tmp_path / "box-evil").mkdir()
        check = guard.resolve_path(str(root), "../box-evil/file.txt")
        assert check["allowed"] is False

    def test_symlink_escape_rejected(self, guard, sandbox_dir, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        os.symlink(str(outside), os.path.join(sandbox_dir, "link"))
        check = guard.resolve_path(sandbox_dir, "link/secret.txt")
        assert check["allowed"] is False


class TestExtensionBoundary:
    """Test the editor file-type allow-list."""

    @pytest.mark.parametrize("path", ["a.py", "README.md", "conf.YAML", "style.scss"])
    def test_allowed(self, guard, path):
        assert guard.check_extension(path)["allowed"] is True

    @pytest.mark.parametrize("path", ["binary.exe", "archive.zip", "Makefile", "image.png"])
    def test_rejected(self, guard, path):
        check = guard.check_extension(path)
        assert check["allowed"] is False
        assert check["error"] == ErrorCode.FILE_TYPE_NOT_ALLOWED


class TestAuditTrail:
    """Test audit records kept by the guard."""

    def test_every_decision_is_recorded(self, guard):
        guard.check_command("ls", "s1")
        guard.check_command("sudo ls", "s1")
        guard.check_url("http://localhost", "s2")

        assert len(guard.get_audit_records()) == 3
        assert len(guard.get_audit_records(session_id="s1")) == 2
        blocked = guard.get_audit_records(blocked_only=True)
        assert len(blocked) == 2
        assert all(r.result == ResultStatus.BLOCKED.value for r in blocked)

    def test_audit_records_are_capped(self, audit_logger):
        guard = SandboxGuard(audit_logger=audit_logger, max_audit_records=5)

        for i in range(12):
            guard.check_command(f"echo {i}", f"s{i}")

        records = guard.get_audit_records()
        assert len(records) == 5
        assert [r.session_id for r in records] == ["s7", "s8", "s9", "s10", "s11"]
