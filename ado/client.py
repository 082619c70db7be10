"""Azure DevOps REST client for projects, teams, team members and identities."""

import logging
import uuid
from typing import Any
from urllib.parse import quote, urlsplit

import requests
from requests.adapters import HTTPAdapter

from . import __version__
from .auth import AuthManager, create_auth_manager
from .config import AdoMcpConfig
from .errors import (
    AdoAuthenticationError,
    AdoConfigurationError,
    AdoNetworkError,
    AdoRateLimitError,
    AdoTimeoutError,
)
from .models import IdentitySearchResult, Project, Team, TeamMember
from .telemetry import get_telemetry_manager, initialize_telemetry

logger = logging.getLogger(__name__)

CORE_API_VERSION = "7.1"
IDENTITIES_API_VERSION = "7.2-preview.1"
DEFAULT_USER_AGENT = f"ado-core-mcp/{__version__}"


def identity_service_url(organization_url: str) -> str:
    """
    Map an organization URL to the identities endpoint on its ``vssps`` host.

    ``https://dev.azure.com/contoso`` becomes
    ``https://vssps.dev.azure.com/contoso/_apis/identities`` and
    ``https://contoso.visualstudio.com`` becomes
    ``https://contoso.vssps.visualstudio.com/_apis/identities``.

    Raises:
        AdoConfigurationError: If the organization name cannot be determined.
    """
    parts = urlsplit(organization_url)
    host = (parts.hostname or "").lower()
    segments = [segment for segment in parts.path.split("/") if segment]

    if host.endswith(".visualstudio.com"):
        org = host.split(".")[0]
        return f"{parts.scheme}://{org}.vssps.visualstudio.com/_apis/identities"

    if not segments:
        raise AdoConfigurationError(
            "Cannot determine organization name from URL",
            context={"organization_url": organization_url},
        )
    return f"{parts.scheme}://vssps.{host}/{segments[0]}/_apis/identities"


def _drop_none(params: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


def _bool_param(value: bool | None) -> str | None:
    if value is None:
        return None
    return "true" if value else "false"


class AdoClient:
    """
    A client for the parts of the Azure DevOps REST API the core tools need.

    Args:
        organization_url: e.g. ``https://dev.azure.com/contoso``. Taken from the
            configuration when omitted.
        pat: Personal access token. Optional for the ``chain``, ``env`` and
            ``azcli`` authentication types.
        config: Settings; read from the environment when omitted.
        auth_manager: Pre-built credential chain, mostly useful in tests.
        user_agent: Value sent in the ``User-Agent`` header.

    Raises:
        AdoConfigurationError: If no organization URL is available.
        AdoAuthenticationError: If the chosen authentication type cannot produce a credential.
    """

    def __init__(
        self,
        organization_url: str | None = None,
        pat: str | None = None,
        config: AdoMcpConfig | None = None,
        auth_manager: AuthManager | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.config = config or AdoMcpConfig.from_env()
        self.organization_url = (organization_url or self.config.organization_url or "").rstrip("/")
        if not self.organization_url:
            raise AdoConfigurationError(
                "Organization URL is required. Provide it explicitly or set ADO_ORGANIZATION_URL."
            )

        self.user_agent = user_agent
        self.correlation_id = str(uuid.uuid4())

        self.telemetry = get_telemetry_manager()
        if not self.telemetry and self.config.telemetry.enabled:
            self.telemetry = initialize_telemetry(self.config.telemetry)

        self.auth_manager = auth_manager or create_auth_manager(
            self.config.auth.auth_type, self.config.auth, pat or self.config.pat
        )
        self.session = self._create_session() if self.config.connection_pool.enabled else None

        logger.info(
            f"AdoClient initialized for {self.organization_url} "
            f"(auth_type={self.config.auth.auth_type}, correlation_id={self.correlation_id})"
        )

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=self.config.connection_pool.max_pool_connections,
            pool_maxsize=self.config.connection_pool.max_pool_size,
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def close(self):
        if self.session is not None:
            logger.info("Closing HTTP session")
            self.session.close()

    def _headers(self) -> dict[str, str]:
        try:
            headers = self.auth_manager.get_auth_headers()
        except AdoAuthenticationError:
            if self.telemetry:
                self.telemetry.record_auth_attempt("none", False)
            raise
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "application/json"
        headers["User-Agent"] = self.user_agent
        return headers

    def _validate_response(self, response: requests.Response) -> None:
        """
        Azure DevOps answers a bad or expired token on some endpoints with a
        200 sign-in page instead of a 401.
        """
        content_type = response.headers.get("Content-Type", "")
        if "text/html" in content_type and "Sign In" in response.text:
            logger.error("Authentication failed: response contains a sign-in page")
            self.auth_manager.invalidate_cache()
            raise AdoAuthenticationError(
                "Authentication failed. The response contained a sign-in page, "
                "which likely means the Personal Access Token (PAT) is invalid or expired.",
                context={
                    "correlation_id": self.correlation_id,
                    "url": str(response.url),
                    "status_code": response.status_code,
                },
            )

    def _send_request(self, method: str, url: str, **kwargs) -> dict[str, Any] | None:
        """
        Send an authenticated request and return the decoded JSON body.

        Returns:
            The parsed JSON response, or None for an empty body.

        Raises:
            AdoAuthenticationError: No credential, or a sign-in page came back.
            AdoRateLimitError: The API answered 429.
            AdoTimeoutError: The request timed out.
            AdoNetworkError: Connection-level failures.
            requests.exceptions.HTTPError: Any other non-2xx status.
        """
        kwargs.setdefault("timeout", self.config.request_timeout_seconds)
        request = self.session.request if self.session is not None else requests.request
        context = {"correlation_id": self.correlation_id, "method": method, "url": url}

        try:
            response = request(method, url, headers=self._headers(), **kwargs)
        except requests.exceptions.Timeout as e:
            raise AdoTimeoutError(
                f"Request timeout for {method} {url}",
                timeout_seconds=kwargs["timeout"],
                context=context,
                original_exception=e,
            ) from e
        except requests.exceptions.RequestException as e:
            raise AdoNetworkError(
                f"Network error for {method} {url}: {e}",
                context={**context, "error_type": type(e).__name__},
                original_exception=e,
            ) from e

        self._validate_response(response)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise AdoRateLimitError(
                f"Rate limit exceeded for {method} {url}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                context={**context, "status_code": response.status_code},
            )

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError:
            if response.status_code == 401:
                self.auth_manager.invalidate_cache()
            logger.error(
                f"HTTP Error: {response.status_code} for {method} {url} - "
                f"Response Body: {response.text[:500] if response.text else 'No response'}"
            )
            raise

        return response.json() if response.content else None

    def _get(self, operation: str, url: str, params: dict[str, Any]) -> dict[str, Any] | None:
        params = _drop_none(params)
        if self.telemetry:
            with self.telemetry.trace_api_call(
                operation,
                **{"ado.url": url, "correlation_id": self.correlation_id},
            ):
                return self._send_request("GET", url, params=params)
        return self._send_request("GET", url, params=params)

    def check_authentication(self) -> bool:
        """
        Verify the credentials with a call to the ConnectionData endpoint.

        Raises:
            AdoAuthenticationError: If the credentials are rejected.
        """
        url = f"{self.organization_url}/_apis/connectionData"
        try:
            data = self._get("check_authentication", url, {"api-version": "7.1-preview.1"}) or {}
        except AdoAuthenticationError:
            if self.telemetry:
                self.telemetry.record_auth_attempt(self.auth_manager.method, False)
            raise
        except Exception as e:
            if self.telemetry:
                self.telemetry.record_auth_attempt(self.auth_manager.method, False)
            raise AdoAuthenticationError(
                f"Authentication check failed: {e}",
                context={"correlation_id": self.correlation_id, "error_type": type(e).__name__},
                original_exception=e,
            ) from e

        user = data.get("authenticatedUser") or {}
        if user.get("providerDisplayName") == "Anonymous":
            raise AdoAuthenticationError(
                "Authentication failed. The organization treated the request as anonymous.",
                context={"correlation_id": self.correlation_id, "user_id": user.get("id")},
            )

        if self.telemetry:
            self.telemetry.record_auth_attempt(self.auth_manager.method, True)
        logger.info("Authentication successful")
        return True

    def list_projects(
        self,
        state_filter: str | None = None,
        top: int | None = None,
        skip: int | None = None,
        continuation_token: int | None = None,
    ) -> list[Project] | None:
        """
        Retrieve the projects in the organization.

        Returns:
            The projects, or None if the response carried no project list.
        """
        url = f"{self.organization_url}/_apis/projects"
        data = self._get(
            "list_projects",
            url,
            {
                "stateFilter": state_filter,
                "$top": top,
                "$skip": skip,
                "continuationToken": continuation_token,
                "getDefaultTeamImageUrl": "false",
                "api-version": CORE_API_VERSION,
            },
        )
        if not data or data.get("value") is None:
            return None

        projects = [Project(**project) for project in data["value"]]
        logger.info(f"Retrieved {len(projects)} projects")
        return projects

    def list_project_teams(
        self,
        project: str,
        mine: bool | None = None,
        top: int | None = None,
        skip: int | None = None,
    ) -> list[Team] | None:
        """
        Retrieve the teams of a project.

        Args:
            project: Project name or ID.
            mine: Only teams the authenticated user belongs to.
        """
        url = f"{self.organization_url}/_apis/projects/{quote(project, safe='')}/teams"
        data = self._get(
            "list_project_teams",
            url,
            {
                "$mine": _bool_param(mine),
                "$top": top,
                "$skip": skip,
                "$expandIdentity": "false",
                "api-version": CORE_API_VERSION,
            },
        )
        if not data or data.get("value") is None:
            return None

        teams = [Team(**team) for team in data["value"]]
        logger.info(f"Retrieved {len(teams)} teams for project {project}")
        return teams

    def list_team_members(self, project: str, team: str) -> list[TeamMember] | None:
        """
        Retrieve the members of a team, including their team admin flag.
        """
        url = (
            f"{self.organization_url}/_apis/projects/{quote(project, safe='')}"
            f"/teams/{quote(team, safe='')}/members"
        )
        data = self._get("list_team_members", url, {"api-version": CORE_API_VERSION})
        if not data or data.get("value") is None:
            return None

        members = [TeamMember(**member) for member in data["value"]]
        logger.info(f"Retrieved {len(members)} members for team {team} in project {project}")
        return members

    def search_identities(self, filter_value: str) -> IdentitySearchResult:
        """
        Search identities with the ``General`` filter (display name, account or mail).

        Raises:
            requests.exceptions.HTTPError: If the identities endpoint rejects the request.
        """
        url = identity_service_url(self.organization_url)
        data = self._get(
            "search_identities",
            url,
            {
                "searchFilter": "General",
                "filterValue": filter_value,
                "api-version": IDENTITIES_API_VERSION,
            },
        )
        return IdentitySearchResult(**(data or {}))
