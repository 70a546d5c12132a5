"""Bug report submission models.

This module defines the validated input accepted by the Submit operation.
Malformed submissions are rejected here, before any issue record exists.

Both snake_case and the camelCase keys used by the dashboard client
(stepsToReproduce, repoUrl) are accepted.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from site_surgeon.state.models import Severity


class IssueReport(BaseModel):
    """Validated bug report submitted to the pipeline.

    Attributes:
        title: Short summary of the bug.
        description: Full description of the bug.
        steps_to_reproduce: How to trigger the bug.
        severity: One of low, medium, high, critical (case-insensitive).
        repo_url: http(s) URL of the target repository.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(
        ...,
        min_length=1,
        max_length=300,
        description="Short summary of the bug (cannot be empty)",
    )

    description: str = Field(
        ...,
        min_length=1,
        description="Full description of the bug (cannot be empty)",
    )

    steps_to_reproduce: str = Field(
        ...,
        min_length=1,
        alias="stepsToReproduce",
        description="Steps that reproduce the bug (cannot be empty)",
    )

    severity: Severity = Field(
        ...,
        description="Reporter-assigned severity",
    )

    repo_url: str = Field(
        ...,
        min_length=1,
        alias="repoUrl",
        description="URL of the target repository",
    )

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v):
        """Accept severity values in any letter case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("repo_url")
    @classmethod
    def validate_repo_url(cls, v: str) -> str:
        """Validate that the repository URL is an http(s) URL with a path."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("repo_url must start with http:// or https://")
        path = v.split("://", 1)[1].partition("/")[2].strip("/")
        if not path:
            raise ValueError("repo_url must include the repository path")
        return v
