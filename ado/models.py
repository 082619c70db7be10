from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Project(BaseModel):
    """
    Represents an Azure DevOps project (TeamProjectReference).

    Only the fields the tools look at are typed; everything else the REST API
    returns is kept and serialized back as received.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None
    description: str | None = None
    url: str | None = None
    state: str | None = None
    revision: int | None = None
    visibility: str | None = None
    lastUpdateTime: str | None = None


class Team(BaseModel):
    """
    Represents a team (WebApiTeam) inside a project.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None
    description: str | None = None
    url: str | None = None
    identityUrl: str | None = None
    projectName: str | None = None
    projectId: str | None = None


class IdentityRef(BaseModel):
    """
    The identity embedded in a team member record. Any field may be missing.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    descriptor: str | None = None
    displayName: str | None = None
    uniqueName: str | None = None


class TeamMember(BaseModel):
    identity: IdentityRef | None = None
    isTeamAdmin: bool | None = None


def _string_property(value: Any) -> str | None:
    # The identities endpoint wraps values as {"$type": "System.String", "$value": "..."}
    if isinstance(value, dict):
        value = value.get("$value")
    return value if isinstance(value, str) else None


class IdentityProperties(BaseModel):
    """
    The two identity properties enrichment cares about. Non-string values count as absent.
    """

    model_config = ConfigDict(populate_by_name=True)

    account: str | None = Field(default=None, alias="Account")
    mail: str | None = Field(default=None, alias="Mail")

    @field_validator("account", "mail", mode="before")
    @classmethod
    def _only_strings(cls, value: Any) -> str | None:
        return _string_property(value)


class IdentityCandidate(BaseModel):
    """
    One identity returned by the identity search endpoint.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    descriptor: str | None = None
    providerDisplayName: str | None = None
    properties: IdentityProperties = Field(default_factory=IdentityProperties)

    @field_validator("properties", mode="before")
    @classmethod
    def _properties_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, IdentityProperties)) else {}


class IdentitySearchResult(BaseModel):
    count: int | None = None
    value: list[IdentityCandidate] = Field(default_factory=list)


class IdentitySummary(BaseModel):
    """
    Trimmed identity returned by the identity lookup tool.
    """

    id: str | None = None
    displayName: str | None = None
    descriptor: str | None = None


class NormalizedMember(BaseModel):
    """
    A team member after identity enrichment.

    ``uniqueName`` is left out of the serialized form when it could not be resolved.
    """

    id: str | None = None
    descriptor: str | None = None
    displayName: str = ""
    uniqueName: str | None = None
    providerDisplayName: str = ""
    isTeamAdministrator: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump()
        if data["uniqueName"] is None:
            del data["uniqueName"]
        return data
