"""Buildkite REST client.

Responsible for two things:
1. Listing builds for one organization/pipeline/branch, one page at a time
2. Mapping every failure to a classified BuildSourceError

The client does not paginate on its own. Page-by-page control lives in
core/fetcher.py because the stopping rules depend on what earlier pages
contained.

Buildkite API reference: https://buildkite.com/docs/apis/rest-api/builds
"""

import logging

import httpx
from pydantic import ValidationError

from integrations.errors import NetworkFailureError, UnclassifiedError, error_for_status
from schemas.build import FETCHABLE_BUILD_STATES, BuildRecord
from schemas.settings import BUILDKITE_API_BASE

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


class BuildkiteClient:
    """Async client for the Buildkite builds endpoints of one pipeline.

    Use as an async context manager so one connection pool serves every page
    of a fetch:

        async with BuildkiteClient(token, "vllm", "ci") as client:
            builds = await client.list_builds("main", page=1, per_page=50)

    Attributes:
        org_slug: Organization slug.
        pipeline_slug: Pipeline slug.
    """

    def __init__(
        self,
        token: str | None,
        org_slug: str,
        pipeline_slug: str,
        api_base: str = BUILDKITE_API_BASE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            token: Bearer token sent on every request. May be None for
                public pipelines.
            org_slug: Organization slug from the Buildkite URL.
            pipeline_slug: Pipeline slug from the Buildkite URL.
            api_base: REST API root.
            timeout_seconds: Per-request timeout.
            transport: Optional httpx transport. Tests pass an
                httpx.MockTransport here.
        """
        self.org_slug = org_slug
        self.pipeline_slug = pipeline_slug

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._http = httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "BuildkiteClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def _builds_path(self) -> str:
        return f"/organizations/{self.org_slug}/pipelines/{self.pipeline_slug}/builds"

    # ---------------------------------------------------------------------------
    # Endpoints
    # ---------------------------------------------------------------------------

    async def list_builds(self, branch: str, page: int, per_page: int) -> list[BuildRecord]:
        """Fetch one page of builds for a branch, newest first.

        Retried jobs are left out and builds that are still only scheduled
        are filtered server-side.

        Args:
            branch: Branch to filter on.
            page: 1-based page number.
            per_page: Page size.

        Returns:
            The builds on that page. An empty list means there are no more.
            Builds that fail validation are logged and left out.

        Raises:
            BuildSourceError: A classified subclass for any failure.
        """
        params = {
            "branch": branch,
            "page": page,
            "per_page": per_page,
            "include_retried_jobs": "false",
            "state[]": [state.value for state in FETCHABLE_BUILD_STATES],
        }
        logger.debug("GET %s page=%d per_page=%d branch=%s", self._builds_path, page, per_page, branch)
        payload = await self._get_json(self._builds_path, params=params)

        if not isinstance(payload, list):
            raise UnclassifiedError(
                f"Expected a list of builds, got {type(payload).__name__}."
            )
        builds = []
        for raw in payload:
            try:
                builds.append(BuildRecord.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed build %s on page %d: %s",
                    raw.get("number") if isinstance(raw, dict) else "?",
                    page,
                    exc.errors()[:3],
                )
        return builds

    async def get_build(self, number: int) -> BuildRecord:
        """Fetch a single build by its number.

        Raises:
            BuildSourceError: A classified subclass for any failure.
        """
        payload = await self._get_json(f"{self._builds_path}/{number}")
        if not isinstance(payload, dict):
            raise UnclassifiedError(
                f"Expected a build object, got {type(payload).__name__}."
            )
        return self._parse_build(payload)

    # ---------------------------------------------------------------------------
    # Transport and error mapping
    # ---------------------------------------------------------------------------

    async def _get_json(self, path: str, params: dict | None = None):
        """GET a path and return the decoded JSON body.

        Raises:
            BuildSourceError: Status errors are classified by code; transport
                errors and timeouts become NetworkFailureError; an undecodable
                body becomes UnclassifiedError.
        """
        try:
            response = await self._http.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            error = error_for_status(status, detail=exc.response.reason_phrase or None)
            logger.error("Buildkite request %s failed with HTTP %d: %s", path, status, error)
            raise error from exc
        except httpx.TransportError as exc:
            logger.error("Buildkite request %s failed in transport: %s", path, exc)
            raise NetworkFailureError(status_code=None) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise UnclassifiedError("Build source returned a body that is not JSON.") from exc

    def _parse_build(self, raw: dict) -> BuildRecord:
        try:
            return BuildRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Rejected malformed build payload: %s", exc.errors()[:3])
            raise UnclassifiedError("Build source returned a malformed build.") from exc
