"""
Identity enrichment for team member listings.

Team member records sometimes come back without a unique name, descriptor or ID.
For those members we search the organization's identities, pick the best
candidate and fill the gaps. Lookups are memoized for the lifetime of one
``IdentityEnricher``, which the team members tool creates per invocation, so
identities are never cached across calls.
"""

import logging
from typing import Callable, Iterable

from opentelemetry import trace

from .models import (
    IdentityCandidate,
    IdentityRef,
    IdentitySearchResult,
    NormalizedMember,
    TeamMember,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

IdentitySearch = Callable[[str], IdentitySearchResult]


def first_set(*values):
    """First value that is not None; empty strings count as set."""
    return next((value for value in values if value is not None), None)


def needs_enrichment(identity: IdentityRef | None) -> bool:
    """True unless the identity already has a unique name, a descriptor and an ID."""
    if identity is None:
        return True
    return not (identity.uniqueName and identity.descriptor and identity.id)


def lookup_key(identity: IdentityRef | None) -> str | None:
    """The value to search for: unique name, else display name, else raw ID."""
    if identity is None:
        return None
    return identity.uniqueName or identity.displayName or identity.id or None


def select_candidate(
    candidates: list[IdentityCandidate], lookup: str, identity_id: str | None
) -> IdentityCandidate | None:
    """
    Pick the first candidate that matches the member, else the first candidate.

    A candidate matches when its ID equals the member's ID, or when its provider
    display name, ``Account`` property or ``Mail`` property equals the lookup key.
    Candidates are checked in the order the search returned them.
    """
    for candidate in candidates:
        # Two missing IDs are not a match.
        if identity_id is not None and candidate.id == identity_id:
            return candidate
        if lookup in (
            candidate.providerDisplayName,
            candidate.properties.account,
            candidate.properties.mail,
        ):
            return candidate
    return candidates[0] if candidates else None


class IdentityEnricher:
    """
    Resolves partial team member identities through an identity search callable.

    Args:
        search: Called with the lookup key; returns the search result. Usually
            ``AdoClient.search_identities``.
        telemetry: Optional ``TelemetryManager`` used to count lookup outcomes.
    """

    def __init__(self, search: IdentitySearch, telemetry=None):
        self._search = search
        self._cache: dict[str, IdentityCandidate | None] = {}
        self.telemetry = telemetry

    def _record(self, outcome: str):
        if self.telemetry:
            self.telemetry.record_identity_lookup(outcome)

    def resolve(self, lookup: str | None, identity_id: str | None = None) -> IdentityCandidate | None:
        """
        Find the identity behind ``lookup``, or None.

        Search failures are logged and cached as "not found" so one bad lookup
        never stops the rest of the listing.
        """
        if not lookup:
            return None

        if lookup in self._cache:
            logger.debug(f"Identity cache hit for '{lookup}'")
            self._record("hit")
            return self._cache[lookup]

        with tracer.start_as_current_span("identity_search") as span:
            span.set_attribute("identity.lookup_key", lookup)
            try:
                result = self._search(lookup)
            except Exception as e:
                logger.warning(f"Identity search failed for '{lookup}': {e}")
                span.record_exception(e)
                span.set_attribute("identity.outcome", "error")
                self._cache[lookup] = None
                self._record("error")
                return None

            candidates = result.value if result else []
            match = select_candidate(candidates, lookup, identity_id)
            span.set_attribute("identity.candidates_count", len(candidates))
            span.set_attribute("identity.outcome", "found" if match else "not_found")

        self._cache[lookup] = match
        self._record("miss" if match else "not_found")
        return match

    def normalize(self, member: TeamMember) -> NormalizedMember:
        """
        Merge a member's own identity fields with whatever enrichment found.

        The member's own values always win; enrichment only fills fields that
        are missing.
        """
        identity = member.identity or IdentityRef()
        enriched = None
        if needs_enrichment(member.identity):
            enriched = self.resolve(lookup_key(member.identity), identity.id)

        fallback_unique_name = None
        provider_display_name = None
        if enriched is not None:
            fallback_unique_name = first_set(enriched.properties.account, enriched.properties.mail)
            provider_display_name = enriched.providerDisplayName

        return NormalizedMember(
            id=first_set(identity.id, enriched.id if enriched else None),
            descriptor=first_set(identity.descriptor, enriched.descriptor if enriched else None),
            displayName=first_set(identity.displayName, provider_display_name, ""),
            uniqueName=first_set(identity.uniqueName, fallback_unique_name),
            providerDisplayName=first_set(provider_display_name, identity.displayName, ""),
            isTeamAdministrator=first_set(member.isTeamAdmin, False),
        )

    def normalize_members(self, members: Iterable[TeamMember]) -> list[NormalizedMember]:
        """Normalize members one at a time, keeping their order."""
        return [self.normalize(member) for member in members]
