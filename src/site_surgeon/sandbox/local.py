"""Local filesystem sandboxes.

Creates one directory per sandbox under a configurable base path, clones
the target repository into it with git, and runs package-manager and
verification commands as asyncio subprocesses bounded by the sandbox's
remaining lifetime. Handles retention-based cleanup of directories left
behind by crashed processes.
"""

import asyncio
import json
import logging
import os
import shutil
import time
import uuid
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from site_surgeon.sandbox.base import (
    DEFAULT_SANDBOX_TIMEOUT_SECONDS,
    GitCloneError,
    Sandbox,
    SandboxCreationError,
    SandboxError,
    SandboxExpiredError,
    SandboxFileError,
    VerificationResult,
    tail,
    to_clone_url,
)

logger = logging.getLogger(__name__)

SANDBOX_DIR_PERMISSIONS = 0o755
SANDBOX_DIR_PREFIX = "sbx-"

IGNORED_DIRECTORIES = frozenset(
    {
        ".git",
        "node_modules",
        "dist",
        "build",
        ".next",
        "__pycache__",
        "venv",
        ".venv",
        ".env",
        "coverage",
    }
)

# First matching marker file wins.
PACKAGE_MANAGERS: Tuple[Tuple[str, str, Tuple[str, ...]], ...] = (
    ("package-lock.json", "npm", ("npm", "install", "--legacy-peer-deps")),
    ("yarn.lock", "yarn", ("yarn", "install", "--non-interactive")),
    ("pnpm-lock.yaml", "pnpm", ("pnpm", "install", "--frozen-lockfile")),
    (
        "requirements.txt",
        "pip",
        ("python", "-m", "pip", "install", "-r", "requirements.txt"),
    ),
    ("pyproject.toml", "pip", ("python", "-m", "pip", "install", ".")),
)

PYTHON_PROJECT_MARKERS = ("requirements.txt", "pyproject.toml", "setup.py")


def detect_install_command(repo_dir: Path) -> Optional[Tuple[str, Tuple[str, ...]]]:
    """Pick the install command for a repository from its marker files.

    Returns:
        (manager name, argv) or None if no package manager is recognised.
    """
    for marker, manager, command in PACKAGE_MANAGERS:
        if (repo_dir / marker).is_file():
            return manager, command
    return None


def detect_verification_command(repo_dir: Path) -> Optional[Tuple[str, ...]]:
    """Pick the test or build command for a repository.

    Node projects run their ``test`` script, falling back to ``build``;
    Python projects run pytest. Returns None when nothing is runnable.
    """
    package_json = repo_dir / "package.json"
    if package_json.is_file():
        try:
            scripts = json.loads(package_json.read_text(encoding="utf-8")).get(
                "scripts", {}
            )
        except (OSError, ValueError, AttributeError):
            scripts = {}
        if not isinstance(scripts, dict):
            scripts = {}
        if "test" in scripts:
            return ("npm", "test", "--", "--passWithNoTests")
        if "build" in scripts:
            return ("npm", "run", "build")
        return None

    if any((repo_dir / marker).is_file() for marker in PYTHON_PROJECT_MARKERS):
        return ("python", "-m", "pytest", "--tb=short", "-q")
    return None


class LocalSandbox(Sandbox):
    """Sandbox backed by a private directory on the local filesystem.

    Attributes:
        root: The sandbox directory.
        repo_dir: Where the repository is cloned, inside ``root``.
    """

    def __init__(
        self,
        sandbox_id: str,
        root: Path,
        timeout_seconds: float = DEFAULT_SANDBOX_TIMEOUT_SECONDS,
    ):
        super().__init__(sandbox_id, timeout_seconds)
        self.root = root
        self.repo_dir = root / "repo"
        self._destroyed = False

    async def clone_repo(self, repo_url: str) -> None:
        clone_url = to_clone_url(repo_url)
        self._log(f"Cloning {clone_url}")

        try:
            returncode, output = await self._run(
                ("git", "clone", "--depth", "1", clone_url, str(self.repo_dir)),
                cwd=self.root,
            )
        except SandboxExpiredError:
            raise
        except SandboxError as exc:
            raise GitCloneError(clone_url, str(exc), self.sandbox_id) from exc

        if returncode != 0:
            raise GitCloneError(clone_url, tail(output).strip(), self.sandbox_id)

        self._log("Repository cloned")
        logger.info(
            "Cloned repository",
            extra={"sandbox_id": self.sandbox_id, "repo_url": clone_url},
        )

    async def install_dependencies(self) -> None:
        detected = detect_install_command(self.repo_dir)
        if detected is None:
            self._log("No package manager detected, skipping dependency install")
            return

        manager, command = detected
        self._log(f"Installing dependencies with {manager}: {' '.join(command)}")

        try:
            returncode, output = await self._run(command, cwd=self.repo_dir)
        except SandboxExpiredError:
            raise
        except SandboxError as exc:
            self._log(f"Warning: dependency install could not run: {exc}")
            logger.warning(
                "Dependency install could not run",
                extra={"sandbox_id": self.sandbox_id, "error": str(exc)},
            )
            return

        if output.strip():
            self._log(tail(output))
        if returncode != 0:
            self._log(f"Warning: dependency install exited with code {returncode}")
            logger.warning(
                "Dependency install failed",
                extra={
                    "sandbox_id": self.sandbox_id,
                    "manager": manager,
                    "exit_code": returncode,
                },
            )
        else:
            self._log("Dependencies installed")

    async def list_files(self) -> List[str]:
        self._ensure_alive()
        if not self.repo_dir.is_dir():
            return []

        files: List[str] = []
        for dirpath, dirnames, filenames in os.walk(self.repo_dir):
            dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRECTORIES)
            base = Path(dirpath)
            for name in sorted(filenames):
                files.append((base / name).relative_to(self.repo_dir).as_posix())
        return files

    async def read_file(self, path: str) -> str:
        self._ensure_alive()
        target = self._resolve(path)
        try:
            # newline="" keeps CRLF endings byte-for-byte
            with target.open(encoding="utf-8", newline="") as fh:
                return fh.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise SandboxFileError(path, str(exc), self.sandbox_id) from exc

    async def write_file(self, path: str, content: str) -> None:
        self._ensure_alive()
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8", newline="") as fh:
                fh.write(content)
        except OSError as exc:
            raise SandboxFileError(path, str(exc), self.sandbox_id) from exc

    async def run_verification(self) -> VerificationResult:
        self._ensure_alive()
        command = detect_verification_command(self.repo_dir)
        if command is None:
            return VerificationResult(command=None, exit_code=None)

        command_text = " ".join(command)
        try:
            returncode, output = await self._run(command, cwd=self.repo_dir)
        except SandboxExpiredError:
            raise
        except SandboxError as exc:
            return VerificationResult(
                command=command_text, exit_code=-1, output=str(exc)
            )
        return VerificationResult(
            command=command_text, exit_code=returncode, output=tail(output)
        )

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        try:
            shutil.rmtree(self.root)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise SandboxError(
                f"Failed to remove sandbox directory {self.root}: {exc}",
                self.sandbox_id,
            ) from exc
        logger.info(
            "Destroyed sandbox",
            extra={"sandbox_id": self.sandbox_id, "path": str(self.root)},
        )

    def _resolve(self, path: str) -> Path:
        """Resolve a repository-relative path, refusing escapes."""
        repo_root = self.repo_dir.resolve()
        target = (repo_root / path).resolve()
        if target == repo_root or not target.is_relative_to(repo_root):
            raise SandboxFileError(
                path, "path is outside the repository", self.sandbox_id
            )
        return target

    async def _run(self, command: Sequence[str], cwd: Path) -> Tuple[int, str]:
        """Run a command bounded by the sandbox's remaining lifetime.

        Returns:
            (exit code, combined stdout/stderr).

        Raises:
            SandboxExpiredError: If the sandbox expires before or during
                the command.
            SandboxError: If the command cannot be started.
        """
        self._ensure_alive()
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise SandboxError(
                f"Failed to execute {command[0]}: {exc}", self.sandbox_id
            ) from exc

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(),
                timeout=self.remaining_seconds,
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise SandboxExpiredError(
                self.sandbox_id, self.timeout_seconds
            ) from exc

        return process.returncode, stdout.decode(errors="replace")


class LocalSandboxProvider:
    """Creates LocalSandbox instances under a base directory.

    Attributes:
        base_path: Root directory where sandboxes are created.
        timeout_seconds: Lifetime given to every sandbox.
        retention_days: Age after which leftover sandbox directories are
            removed by cleanup_stale_sandboxes().
    """

    def __init__(
        self,
        base_path: Path,
        timeout_seconds: float = DEFAULT_SANDBOX_TIMEOUT_SECONDS,
        retention_days: int = 1,
    ):
        self.base_path = Path(base_path)
        self.timeout_seconds = timeout_seconds
        self.retention_days = retention_days

    async def create(self) -> LocalSandbox:
        sandbox_id = f"{SANDBOX_DIR_PREFIX}{uuid.uuid4().hex[:12]}"
        root = self.base_path / sandbox_id

        try:
            root.mkdir(parents=True, exist_ok=False)
            root.chmod(SANDBOX_DIR_PERMISSIONS)
        except OSError as exc:
            raise SandboxCreationError(
                f"Failed to create sandbox at {root}: {exc}", sandbox_id
            ) from exc

        logger.info(
            "Created sandbox",
            extra={
                "sandbox_id": sandbox_id,
                "path": str(root),
                "timeout_seconds": self.timeout_seconds,
            },
        )
        return LocalSandbox(sandbox_id, root, self.timeout_seconds)

    async def cleanup_stale_sandboxes(self) -> int:
        """Remove sandbox directories older than the retention period.

        Returns:
            Number of directories removed.
        """
        if not self.base_path.exists():
            return 0

        threshold = time.time() - self.retention_days * 86400
        removed_count = 0

        for entry in self.base_path.iterdir():
            if not entry.is_dir() or not entry.name.startswith(SANDBOX_DIR_PREFIX):
                continue
            if entry.stat().st_mtime >= threshold:
                continue
            try:
                shutil.rmtree(entry)
                removed_count += 1
                logger.info(
                    "Removed stale sandbox",
                    extra={"path": str(entry)},
                )
            except OSError:
                logger.exception(
                    "Failed to remove stale sandbox",
                    extra={"path": str(entry)},
                )

        logger.info(
            "Sandbox cleanup complete",
            extra={"removed_count": removed_count},
        )
        return removed_count
