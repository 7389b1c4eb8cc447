"""Collaborator protocols for target discovery and message drafting.

Both are external to the run engine: it only calls them through these
narrow contracts.
"""

from typing import Any, Protocol

from harvester_core.providers.base import CanonicalContact, TargetOrganization


class TargetResolver(Protocol):
    """Turns a free-text search prompt into target organizations."""

    async def resolve(
        self, prompt: str, filters: dict[str, Any]
    ) -> list[TargetOrganization]:
        ...


class MessageDrafter(Protocol):
    """Drafts an outreach message for an accepted contact."""

    async def draft(self, contact: CanonicalContact) -> str:
        ...
