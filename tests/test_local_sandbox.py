"""Unit tests for local filesystem sandboxes.

Subprocess execution is patched out where a test would otherwise need git,
npm or network access.
"""

import asyncio
import json
import os
import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from site_surgeon.sandbox.base import (
    GitCloneError,
    SandboxCreationError,
    SandboxExpiredError,
    SandboxFileError,
    SandboxProvider,
    parse_github_repo,
    tail,
    to_clone_url,
)
from site_surgeon.sandbox.local import (
    LocalSandbox,
    LocalSandboxProvider,
    detect_install_command,
    detect_verification_command,
)


def run_async(coro):
    return asyncio.run(coro)


def _sandbox(tmp_path: Path, timeout: float = 300) -> LocalSandbox:
    root = tmp_path / "sbx-test"
    (root / "repo").mkdir(parents=True)
    return LocalSandbox("sbx-test", root, timeout)


# =============================================================================
# URL helpers
# =============================================================================


class TestUrlHelpers:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://github.com/acme/shop", "https://github.com/acme/shop.git"),
            ("https://github.com/acme/shop/", "https://github.com/acme/shop.git"),
            ("https://github.com/acme/shop.git", "https://github.com/acme/shop.git"),
        ],
    )
    def test_to_clone_url(self, url, expected):
        assert to_clone_url(url) == expected

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/acme/shop",
            "https://github.com/acme/shop.git",
            "https://github.com/acme/shop/",
        ],
    )
    def test_parse_github_repo(self, url):
        assert parse_github_repo(url) == ("acme", "shop")

    @pytest.mark.parametrize(
        "url", ["https://github.com/acme", "https://github.com/a/b/tree/main"]
    )
    def test_parse_github_repo_rejects_other_paths(self, url):
        with pytest.raises(ValueError):
            parse_github_repo(url)

    def test_tail(self):
        assert tail("abcdef", 3) == "def"
        assert tail("abc", 10) == "abc"


# =============================================================================
# Command detection
# =============================================================================


class TestDetection:
    def test_npm_lockfile(self, tmp_path):
        (tmp_path / "package-lock.json").write_text("{}")
        manager, command = detect_install_command(tmp_path)
        assert manager == "npm"
        assert command[:2] == ("npm", "install")

    def test_requirements_txt(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("flask\n")
        manager, command = detect_install_command(tmp_path)
        assert manager == "pip"
        assert "requirements.txt" in command

    def test_no_package_manager(self, tmp_path):
        assert detect_install_command(tmp_path) is None

    def test_npm_test_script_preferred(self, tmp_path):
        (tmp_path / "package.json").write_text(
            json.dumps({"scripts": {"test": "jest", "build": "tsc"}})
        )
        assert detect_verification_command(tmp_path)[:2] == ("npm", "test")

    def test_npm_build_fallback(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "tsc"}}))
        assert detect_verification_command(tmp_path) == ("npm", "run", "build")

    def test_package_json_without_scripts(self, tmp_path):
        (tmp_path / "package.json").write_text("{}")
        assert detect_verification_command(tmp_path) is None

    def test_broken_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text("{not json")
        assert detect_verification_command(tmp_path) is None

    def test_python_project(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[project]\n")
        assert detect_verification_command(tmp_path)[:3] == ("python", "-m", "pytest")

    def test_nothing_runnable(self, tmp_path):
        assert detect_verification_command(tmp_path) is None


# =============================================================================
# LocalSandbox file operations
# =============================================================================


class TestLocalSandboxFiles:
    @pytest.mark.parametrize(
        "content",
        [
            "console.log('hi')\n",
            "line one\r\nline two\r\n",
            "mixed\r\nendings\nand a lone\rreturn",
        ],
    )
    def test_write_then_read(self, tmp_path, content):
        sandbox = _sandbox(tmp_path)

        async def scenario():
            await sandbox.write_file("src/app.js", content)
            return await sandbox.read_file("src/app.js")

        assert run_async(scenario()) == content
        assert (sandbox.repo_dir / "src" / "app.js").read_bytes() == content.encode("utf-8")

    def test_reads_crlf_file_from_clone_unchanged(self, tmp_path):
        sandbox = _sandbox(tmp_path)
        sandbox.repo_dir.mkdir(parents=True, exist_ok=True)
        (sandbox.repo_dir / "index.html").write_bytes(b"<p>\r\n  hi\r\n</p>\r\n")

        assert run_async(sandbox.read_file("index.html")) == "<p>\r\n  hi\r\n</p>\r\n"

    def test_read_missing_file(self, tmp_path):
        with pytest.raises(SandboxFileError):
            run_async(_sandbox(tmp_path).read_file("nope.txt"))

    @pytest.mark.parametrize("path", ["../escape.txt", "/etc/passwd", "a/../../b", "."])
    def test_paths_outside_repository_are_refused(self, tmp_path, path):
        sandbox = _sandbox(tmp_path)
        with pytest.raises(SandboxFileError):
            run_async(sandbox.write_file(path, "x"))
        assert not (tmp_path / "escape.txt").exists()

    def test_list_files_skips_ignored_directories(self, tmp_path):
        sandbox = _sandbox(tmp_path)
        repo = sandbox.repo_dir
        (repo / "src").mkdir()
        (repo / "src" / "index.html").write_text("<html>")
        (repo / "README.md").write_text("# shop")
        (repo / "node_modules" / "lib").mkdir(parents=True)
        (repo / "node_modules" / "lib" / "x.js").write_text("")
        (repo / ".git").mkdir()
        (repo / ".git" / "HEAD").write_text("ref")

        assert run_async(sandbox.list_files()) == ["README.md", "src/index.html"]

    def test_list_files_before_clone(self, tmp_path):
        sandbox = LocalSandbox("sbx-x", tmp_path / "sbx-x")
        assert run_async(sandbox.list_files()) == []

    def test_expired_sandbox_refuses_operations(self, tmp_path):
        sandbox = _sandbox(tmp_path, timeout=0)

        with pytest.raises(SandboxExpiredError) as exc_info:
            run_async(sandbox.list_files())
        assert exc_info.value.sandbox_id == "sbx-test"

        with pytest.raises(SandboxExpiredError):
            run_async(sandbox.write_file("a.txt", "x"))

    def test_destroy_is_idempotent(self, tmp_path):
        sandbox = _sandbox(tmp_path)

        run_async(sandbox.destroy())
        run_async(sandbox.destroy())

        assert not sandbox.root.exists()


# =============================================================================
# LocalSandbox commands
# =============================================================================


class TestLocalSandboxCommands:
    def test_clone_failure_raises_git_clone_error(self, tmp_path):
        sandbox = _sandbox(tmp_path)
        sandbox._run = AsyncMock(return_value=(128, "fatal: repository not found"))

        with pytest.raises(GitCloneError) as exc_info:
            run_async(sandbox.clone_repo("https://github.com/acme/missing"))

        assert "repository not found" in str(exc_info.value)
        assert exc_info.value.repo_url == "https://github.com/acme/missing.git"

    def test_missing_git_binary_raises_git_clone_error(self, tmp_path):
        sandbox = _sandbox(tmp_path)

        with patch(
            "site_surgeon.sandbox.local.asyncio.create_subprocess_exec",
            AsyncMock(side_effect=FileNotFoundError("git")),
        ):
            with pytest.raises(GitCloneError):
                run_async(sandbox.clone_repo("https://github.com/acme/shop"))

    def test_clone_success_logs(self, tmp_path):
        sandbox = _sandbox(tmp_path)
        sandbox._run = AsyncMock(return_value=(0, ""))

        run_async(sandbox.clone_repo("https://github.com/acme/shop"))

        command = sandbox._run.call_args.args[0]
        assert command[:2] == ("git", "clone")
        assert "https://github.com/acme/shop.git" in command
        assert sandbox.drain_logs() == [
            "Cloning https://github.com/acme/shop.git",
            "Repository cloned",
        ]
        assert sandbox.logs == []

    def test_install_skipped_without_package_manager(self, tmp_path):
        sandbox = _sandbox(tmp_path)
        sandbox._run = AsyncMock()

        run_async(sandbox.install_dependencies())

        sandbox._run.assert_not_called()
        assert "skipping" in sandbox.logs[0]

    def test_install_failure_is_a_warning(self, tmp_path):
        sandbox = _sandbox(tmp_path)
        (sandbox.repo_dir / "package-lock.json").write_text("{}")
        sandbox._run = AsyncMock(return_value=(1, "npm ERR! boom"))

        run_async(sandbox.install_dependencies())

        assert any("exited with code 1" in line for line in sandbox.logs)

    def test_install_expiry_propagates(self, tmp_path):
        sandbox = _sandbox(tmp_path)
        (sandbox.repo_dir / "yarn.lock").write_text("")
        sandbox._run = AsyncMock(side_effect=SandboxExpiredError("sbx-test", 300))

        with pytest.raises(SandboxExpiredError):
            run_async(sandbox.install_dependencies())

    def test_verification_skipped(self, tmp_path):
        result = run_async(_sandbox(tmp_path).run_verification())
        assert result.skipped
        assert not result.passed

    def test_verification_runs_detected_command(self, tmp_path):
        sandbox = _sandbox(tmp_path)
        (sandbox.repo_dir / "setup.py").write_text("")
        sandbox._run = AsyncMock(return_value=(0, "3 passed"))

        result = run_async(sandbox.run_verification())

        assert result.passed
        assert result.command.startswith("python -m pytest")
        assert result.output == "3 passed"

    def test_run_captures_output(self, tmp_path):
        sandbox = _sandbox(tmp_path)

        returncode, output = run_async(
            sandbox._run(("sh", "-c", "echo out; echo err >&2; exit 3"), tmp_path)
        )

        assert returncode == 3
        assert "out" in output
        assert "err" in output

    def test_run_is_bounded_by_lifetime(self, tmp_path):
        sandbox = _sandbox(tmp_path, timeout=0.5)

        with pytest.raises(SandboxExpiredError):
            run_async(sandbox._run(("sleep", "5"), tmp_path))


# =============================================================================
# LocalSandboxProvider
# =============================================================================


class TestLocalSandboxProvider:
    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(LocalSandboxProvider(tmp_path), SandboxProvider)

    def test_create_makes_unique_directories(self, tmp_path):
        provider = LocalSandboxProvider(tmp_path, timeout_seconds=60)

        first = run_async(provider.create())
        second = run_async(provider.create())

        assert first.sandbox_id != second.sandbox_id
        assert first.sandbox_id.startswith("sbx-")
        assert first.root.is_dir()
        assert first.timeout_seconds == 60

    def test_create_failure(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        provider = LocalSandboxProvider(blocker)

        with pytest.raises(SandboxCreationError):
            run_async(provider.create())

    def test_cleanup_removes_only_stale_sandboxes(self, tmp_path):
        stale = tmp_path / "sbx-old"
        fresh = tmp_path / "sbx-new"
        unrelated = tmp_path / "keep-me"
        for directory in (stale, fresh, unrelated):
            directory.mkdir()
        old = time.time() - 3 * 86400
        os.utime(stale, (old, old))
        os.utime(unrelated, (old, old))

        removed = run_async(
            LocalSandboxProvider(tmp_path, retention_days=1).cleanup_stale_sandboxes()
        )

        assert removed == 1
        assert not stale.exists()
        assert fresh.exists()
        assert unrelated.exists()

    def test_cleanup_missing_base_path(self, tmp_path):
        provider = LocalSandboxProvider(tmp_path / "absent")
        assert run_async(provider.cleanup_stale_sandboxes()) == 0
