"""Sandbox abstractions for isolated fix generation.

A sandbox is an ephemeral workspace holding one clone of the target
repository. The orchestrator acquires exactly one sandbox per run through a
SandboxProvider and destroys it when the run exits. Every sandbox has a
fixed lifetime measured from creation; operations attempted after the
deadline raise SandboxExpiredError.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple, runtime_checkable
from urllib.parse import urlparse


logger = logging.getLogger(__name__)

DEFAULT_SANDBOX_TIMEOUT_SECONDS = 300
COMMAND_OUTPUT_LIMIT = 2000


class SandboxError(Exception):
    """Base exception for sandbox failures.

    Attributes:
        sandbox_id: The sandbox the failure occurred in, if known.
    """

    def __init__(self, message: str, sandbox_id: Optional[str] = None):
        self.sandbox_id = sandbox_id
        super().__init__(message)


class SandboxCreationError(SandboxError):
    """Raised when a sandbox cannot be created."""

    pass


class GitCloneError(SandboxError):
    """Raised when cloning the target repository fails."""

    def __init__(
        self,
        repo_url: str,
        message: str,
        sandbox_id: Optional[str] = None,
    ):
        self.repo_url = repo_url
        super().__init__(f"Failed to clone {repo_url}: {message}", sandbox_id)


class SandboxExpiredError(SandboxError):
    """Raised when an operation is attempted after the sandbox lifetime."""

    def __init__(self, sandbox_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Sandbox {sandbox_id} expired after {timeout_seconds:g}s",
            sandbox_id,
        )


class SandboxFileError(SandboxError):
    """Raised when a file cannot be read from or written to the sandbox.

    Attributes:
        path: Repository-relative path of the file.
    """

    def __init__(
        self,
        path: str,
        message: str,
        sandbox_id: Optional[str] = None,
    ):
        self.path = path
        super().__init__(f"{path}: {message}", sandbox_id)


@dataclass
class VerificationResult:
    """Outcome of running the repository's verification command.

    Attributes:
        command: The command that was run, or None if nothing was runnable.
        exit_code: Process exit code (None when no command ran).
        output: Combined stdout/stderr, truncated to the tail.
    """

    command: Optional[str]
    exit_code: Optional[int]
    output: str = ""

    @property
    def passed(self) -> bool:
        return self.exit_code == 0

    @property
    def skipped(self) -> bool:
        return self.command is None


class Sandbox(ABC):
    """One ephemeral, isolated workspace owned by a single pipeline run.

    Implementations record human-readable trace lines in ``logs`` as they
    work. The orchestrator collects them with ``drain_logs()`` after each
    stage and appends them to the issue record.

    Attributes:
        sandbox_id: Unique identifier of this sandbox.
        timeout_seconds: Lifetime of the sandbox from creation.
        logs: Trace lines not yet drained.
    """

    def __init__(self, sandbox_id: str, timeout_seconds: float):
        self.sandbox_id = sandbox_id
        self.timeout_seconds = timeout_seconds
        self.logs: List[str] = []
        self._deadline = time.monotonic() + timeout_seconds

    @property
    def remaining_seconds(self) -> float:
        """Seconds left before the sandbox expires (never negative)."""
        return max(0.0, self._deadline - time.monotonic())

    @property
    def is_expired(self) -> bool:
        return time.monotonic() >= self._deadline

    def drain_logs(self) -> List[str]:
        """Return and clear the trace lines recorded so far."""
        lines, self.logs = self.logs, []
        return lines

    def _log(self, line: str) -> None:
        self.logs.append(line)

    def _ensure_alive(self) -> None:
        """Raise SandboxExpiredError once the lifetime has elapsed."""
        if self.is_expired:
            raise SandboxExpiredError(self.sandbox_id, self.timeout_seconds)

    @abstractmethod
    async def clone_repo(self, repo_url: str) -> None:
        """Clone the repository into the sandbox.

        Raises:
            GitCloneError: If the clone fails.
            SandboxExpiredError: If the sandbox has expired.
        """

    @abstractmethod
    async def install_dependencies(self) -> None:
        """Detect the package manager and install dependencies.

        A failing install is recorded in the logs but does not raise.

        Raises:
            SandboxExpiredError: If the sandbox has expired.
        """

    @abstractmethod
    async def list_files(self) -> List[str]:
        """List repository-relative file paths, excluding ignored dirs."""

    @abstractmethod
    async def read_file(self, path: str) -> str:
        """Read a repository-relative file.

        Raises:
            SandboxFileError: If the file cannot be read.
        """

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        """Write a repository-relative file, creating parent directories.

        Raises:
            SandboxFileError: If the file cannot be written.
        """

    @abstractmethod
    async def run_verification(self) -> VerificationResult:
        """Run the repository's tests or build, if it has any."""

    @abstractmethod
    async def destroy(self) -> None:
        """Release every resource held by the sandbox."""


@runtime_checkable
class SandboxProvider(Protocol):
    """Factory for sandboxes."""

    async def create(self) -> Sandbox:
        """Create a fresh sandbox.

        Raises:
            SandboxCreationError: If the sandbox cannot be created.
        """
        ...


# ---------------------------------------------------------------------------
# Repository URL helpers
# ---------------------------------------------------------------------------

_GITHUB_PATH_RE = re.compile(r"^/?([^/]+)/([^/]+?)(?:\.git)?/?$")


def to_clone_url(repo_url: str) -> str:
    """Normalize a repository URL into a git clone URL.

    Example:
        >>> to_clone_url("https://github.com/acme/shop/")
        'https://github.com/acme/shop.git'
    """
    url = repo_url.strip().rstrip("/")
    if not url.endswith(".git"):
        url = f"{url}.git"
    return url


def parse_github_repo(repo_url: str) -> Tuple[str, str]:
    """Extract (owner, name) from a GitHub repository URL.

    Raises:
        ValueError: If the URL path is not of the form /owner/name.
    """
    path = urlparse(repo_url.strip()).path
    match = _GITHUB_PATH_RE.match(path)
    if not match:
        raise ValueError(f"Cannot parse owner/name from repo URL: {repo_url}")
    return match.group(1), match.group(2)


def tail(text: str, limit: int = COMMAND_OUTPUT_LIMIT) -> str:
    """Keep only the last ``limit`` characters of command output."""
    return text[-limit:] if len(text) > limit else text
