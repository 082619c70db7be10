import logging
from typing import Annotated, Callable, Literal

from fastmcp.tools.tool import ToolResult
from pydantic import Field

from ado.client import AdoClient
from ado.errors import error_code
from ado.identity import IdentityEnricher
from ado.models import IdentitySummary, Project
from ado.responses import error_message, error_result, json_result

logger = logging.getLogger(__name__)

CORE_TOOLS = {
    "list_project_teams": "core_list_project_teams",
    "list_team_members": "core_list_team_members",
    "list_projects": "core_list_projects",
    "get_identity_ids": "core_get_identity_ids",
}

ProjectState = Literal["all", "wellFormed", "createPending", "deleted"]


def filter_projects_by_name(projects: list[Project], name_filter: str) -> list[Project]:
    """Keep projects whose name contains ``name_filter``, ignoring case."""
    needle = name_filter.lower()
    return [project for project in projects if project.name and needle in project.name.lower()]


def register_core_tools(mcp_instance, connection_provider: Callable[[], AdoClient]):
    """
    Registers the core Azure DevOps tools with the FastMCP instance.

    Args:
        mcp_instance: The FastMCP instance to register tools with.
        connection_provider: Returns the AdoClient to use; called on every
            invocation so the client can be created lazily.
    """

    @mcp_instance.tool(name=CORE_TOOLS["list_project_teams"])
    def list_project_teams(
        project: Annotated[str, Field(description="The name or ID of the Azure DevOps project.")],
        mine: Annotated[
            bool | None,
            Field(description="If true, only return teams that the authenticated user is a member of."),
        ] = None,
        top: Annotated[
            int | None, Field(description="The maximum number of teams to return. Defaults to 100.")
        ] = None,
        skip: Annotated[
            int | None,
            Field(description="The number of teams to skip for pagination. Defaults to 0."),
        ] = None,
    ) -> ToolResult:
        """
        Retrieve a list of teams for the specified Azure DevOps project.
        """
        try:
            teams = connection_provider().list_project_teams(project, mine=mine, top=top, skip=skip)
        except Exception as e:
            logger.error(f"Error fetching teams for project {project} [{error_code(e)}]: {e}")
            raise error_result(error_message("Error fetching project teams", e)) from e

        if teams is None:
            raise error_result("No teams found")
        return json_result(teams)

    @mcp_instance.tool(name=CORE_TOOLS["list_team_members"])
    def list_team_members(
        project: Annotated[str, Field(description="The name or ID of the Azure DevOps project.")],
        team: Annotated[str, Field(description="The name or ID of the Azure DevOps team.")],
    ) -> ToolResult:
        """
        Retrieve a list of members for the specified Azure DevOps team.

        Members whose identity lacks a unique name, descriptor or ID are
        completed from an identity search where possible.
        """
        try:
            client = connection_provider()
            members = client.list_team_members(project, team)
            if members:
                enricher = IdentityEnricher(client.search_identities, telemetry=client.telemetry)
                normalized = enricher.normalize_members(members)
        except Exception as e:
            logger.error(f"Error fetching members of team {team} in project {project} [{error_code(e)}]: {e}")
            raise error_result(error_message("Error fetching team members", e)) from e

        if not members:
            raise error_result("No team members found")
        return json_result([member.to_dict() for member in normalized])

    @mcp_instance.tool(name=CORE_TOOLS["list_projects"])
    def list_projects(
        state_filter: Annotated[
            ProjectState, Field(description="Filter projects by their state. Defaults to 'wellFormed'.")
        ] = "wellFormed",
        top: Annotated[
            int | None,
            Field(description="The maximum number of projects to return. Defaults to 100."),
        ] = None,
        skip: Annotated[
            int | None,
            Field(description="The number of projects to skip for pagination. Defaults to 0."),
        ] = None,
        continuation_token: Annotated[
            int | None,
            Field(
                description="Continuation token for pagination. Used to fetch the next set of results if available."
            ),
        ] = None,
        project_name_filter: Annotated[
            str | None, Field(description="Filter projects by name. Supports partial matches.")
        ] = None,
    ) -> ToolResult:
        """
        Retrieve a list of projects in your Azure DevOps organization.
        """
        try:
            projects = connection_provider().list_projects(
                state_filter=state_filter,
                top=top,
                skip=skip,
                continuation_token=continuation_token,
            )
        except Exception as e:
            logger.error(f"Error fetching projects [{error_code(e)}]: {e}")
            raise error_result(error_message("Error fetching projects", e)) from e

        if not projects:
            raise error_result("No projects found")

        if project_name_filter:
            projects = filter_projects_by_name(projects, project_name_filter)
        return json_result(projects)

    @mcp_instance.tool(name=CORE_TOOLS["get_identity_ids"])
    def get_identity_ids(
        search_filter: Annotated[
            str,
            Field(
                description="Search filter (unique name, display name, email) to retrieve identity IDs for."
            ),
        ],
    ) -> ToolResult:
        """
        Retrieve Azure DevOps identity IDs for a provided search filter.
        """
        try:
            identities = connection_provider().search_identities(search_filter)
        except Exception as e:
            logger.error(f"Error searching identities for '{search_filter}' [{error_code(e)}]: {e}")
            raise error_result(error_message("Error fetching identities", e)) from e

        if not identities.value:
            raise error_result("No identities found")

        # Fields the identity did not carry are left out of the summary.
        summaries = [
            IdentitySummary(
                **{
                    key: value
                    for key, value in (
                        ("id", identity.id),
                        ("displayName", identity.providerDisplayName),
                        ("descriptor", identity.descriptor),
                    )
                    if value is not None
                }
            )
            for identity in identities.value
        ]
        return json_result(summaries)

    logger.info(f"Registered core tools: {', '.join(CORE_TOOLS.values())}")
