"""Ephemeral sandboxes for cloning, patching and verifying repositories."""

from site_surgeon.sandbox.base import (
    GitCloneError,
    Sandbox,
    SandboxCreationError,
    SandboxError,
    SandboxExpiredError,
    SandboxFileError,
    SandboxProvider,
    VerificationResult,
    parse_github_repo,
    to_clone_url,
)
from site_surgeon.sandbox.local import LocalSandbox, LocalSandboxProvider

__all__ = [
    "GitCloneError",
    "LocalSandbox",
    "LocalSandboxProvider",
    "Sandbox",
    "SandboxCreationError",
    "SandboxError",
    "SandboxExpiredError",
    "SandboxFileError",
    "SandboxProvider",
    "VerificationResult",
    "parse_github_repo",
    "to_clone_url",
]
