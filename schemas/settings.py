"""Dashboard settings.

Which pipeline to watch and how deep to look. Values come from the
environment (a .env file works; entry points call load_dotenv() first).
"""

import os

from pydantic import BaseModel, Field, field_validator

BUILDKITE_API_BASE = "https://api.buildkite.com/v2"

# setting name -> environment variable
_ENV_VARS = {
    "api_token": "BUILDKITE_API_TOKEN",
    "org_slug": "BUILDKITE_ORG",
    "pipeline_slug": "BUILDKITE_PIPELINE",
    "branch": "BUILDKITE_BRANCH",
    "build_limit": "BUILDKITE_BUILD_LIMIT",
    "target_commits": "BUILDKITE_TARGET_COMMITS",
    "per_page": "BUILDKITE_PER_PAGE",
    "timeout_seconds": "BUILDKITE_TIMEOUT_SECONDS",
    "api_base": "BUILDKITE_API_BASE",
}


class DashboardSettings(BaseModel):
    """Connection and fetch-depth settings for one dashboard.

    Attributes:
        org_slug: Organization slug from the Buildkite URL.
        pipeline_slug: Pipeline slug from the Buildkite URL.
        branch: Branch to monitor.
        api_token: Opaque bearer token. None means no fetch is attempted.
        build_limit: Hard cap on builds kept per refresh.
        target_commits: Stop paging once this many distinct commits are seen.
        per_page: Page size requested from the API (the API allows 100 max).
        timeout_seconds: Per-request timeout.
        api_base: REST API root.
    """

    org_slug: str = "vllm"
    pipeline_slug: str = "ci"
    branch: str = "main"
    api_token: str | None = None
    build_limit: int = Field(default=50, ge=1)
    target_commits: int = Field(default=30, ge=1)
    per_page: int = Field(default=50, ge=1, le=100)
    timeout_seconds: float = Field(default=15.0, gt=0)
    api_base: str = BUILDKITE_API_BASE

    @field_validator("api_token")
    @classmethod
    def _blank_token_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def has_credentials(self) -> bool:
        """True when there is enough configuration to call the API."""
        return bool(self.api_token and self.org_slug and self.pipeline_slug)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "DashboardSettings":
        """Build settings from environment variables.

        Unset variables fall back to the field defaults.

        Raises:
            pydantic.ValidationError: If a numeric variable is not a valid
                number or is out of range.
        """
        env = os.environ if environ is None else environ
        values = {
            field: env[var]
            for field, var in _ENV_VARS.items()
            if env.get(var) not in (None, "")
        }
        return cls(**values)
