"""Validation and dedup gate.

Every CanonicalContact passes through the gate before it can become a Lead.
Rules are applied in order and the first match wins:

1. No email                               -> rejected (no-contact-channel)
2. Email domain (or a parent) blocklisted -> rejected (blocked-domain)
3. Organization missing or a placeholder  -> rejected (no-organization)

The run's own filters (ContactRules) come next, each only when configured:

4. Organization domain not requested      -> rejected (domain-mismatch)
5. No title while functions are excluded  -> rejected (no-title)
6. Title in an excluded function          -> rejected (excluded-function)
7. Industry excluded                      -> rejected (excluded-industry)

Last, dedup:

8. Email already a lead for this owner, or
   accepted earlier in this run           -> duplicate

Survivors are inserted with insert-ignore semantics: each insert runs in
its own SAVEPOINT and a unique-constraint violation is counted as a
duplicate. The gate never raises for a single bad record.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from harvester_core.config import Settings
from harvester_core.domain.domains import (
    clean_domains,
    domain_in_blocklist,
    domain_within,
    email_domain,
    normalize_email,
)
from harvester_core.domain.models import Lead, LeadStatus
from harvester_core.providers.base import CanonicalContact, TargetOrganization

logger = logging.getLogger(__name__)

# Titles never excluded by function: founders, and real-estate "development" roles
PROTECTED_TITLE_WORDS = ("founder", "founding", "development")

# Function keywords shorter than this must match a whole word ("HR", "IT")
MIN_SUBSTRING_KEYWORD = 3


class GateOutcome(str, Enum):
    """Outcome of gating a single contact."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


class RejectReason:
    """Rejection reason codes."""

    NO_CONTACT_CHANNEL = "no-contact-channel"
    BLOCKED_DOMAIN = "blocked-domain"
    NO_ORGANIZATION = "no-organization"
    DOMAIN_MISMATCH = "domain-mismatch"
    NO_TITLE = "no-title"
    EXCLUDED_FUNCTION = "excluded-function"
    EXCLUDED_INDUSTRY = "excluded-industry"
    # Duplicate outcomes carry a reason too, for the tally
    ALREADY_PERSISTED = "already-persisted"
    SEEN_IN_RUN = "seen-in-run"
    PERSISTENCE_CONFLICT = "persistence-conflict"


def _function_keywords(label: str) -> list[str]:
    """'HR / Recruiting' -> ['hr', 'recruiting']"""
    return [kw.strip().lower() for kw in label.split("/") if kw.strip()]


def _title_has_keyword(title: str, keyword: str) -> bool:
    if len(keyword) < MIN_SUBSTRING_KEYWORD:
        return re.search(rf"\b{re.escape(keyword)}\b", title) is not None
    return keyword in title


@dataclass(frozen=True)
class ContactRules:
    """Per-run rules, applied after the global ones.

    Attributes:
        requested_domains: Domains the batch asked the provider for. When
            set, a contact whose organization domain is neither one of them
            nor a subdomain of one is rejected.
        excluded_functions: Function labels such as "HR / Recruiting". Any
            "/"-separated keyword found in a title excludes the contact,
            unless the title is a founder or development role.
        excluded_industries: Industry names; a contact whose industry
            contains one is rejected.
    """

    requested_domains: tuple[str, ...] = ()
    excluded_functions: tuple[str, ...] = ()
    excluded_industries: tuple[str, ...] = ()

    @classmethod
    def from_filters(
        cls,
        filters: Mapping[str, Any],
        targets: Iterable[TargetOrganization] = (),
    ) -> "ContactRules":
        """Build the rules for one batch from the run's filters."""
        domains: list[str] = []
        if filters.get("require_domain_match", True):
            domains = clean_domains(t.domain or t.website for t in targets)
        return cls(
            requested_domains=tuple(domains),
            excluded_functions=tuple(
                f.strip() for f in filters.get("excluded_functions") or () if f and f.strip()
            ),
            excluded_industries=tuple(
                i.strip() for i in filters.get("excluded_industries") or () if i and i.strip()
            ),
        )

    def excluded_function(self, title: str) -> Optional[str]:
        """The excluded function label matching a title, if any."""
        title = title.lower()
        if any(word in title for word in PROTECTED_TITLE_WORDS):
            return None
        for label in self.excluded_functions:
            if any(_title_has_keyword(title, kw) for kw in _function_keywords(label)):
                return label
        return None

    def excluded_industry(self, industry: Optional[str]) -> Optional[str]:
        """The excluded industry contained in `industry`, if any."""
        industry = (industry or "").strip().lower()
        if not industry:
            return None
        for excluded in self.excluded_industries:
            if excluded.lower() in industry:
                return excluded
        return None

    def rejection_reason(self, contact: CanonicalContact) -> Optional[str]:
        if self.requested_domains and not domain_within(
            contact.organization_domain, self.requested_domains
        ):
            return RejectReason.DOMAIN_MISMATCH

        if self.excluded_functions:
            title = (contact.title or "").strip()
            if not title:
                return RejectReason.NO_TITLE
            if self.excluded_function(title) is not None:
                return RejectReason.EXCLUDED_FUNCTION

        if self.excluded_industry(contact.industry) is not None:
            return RejectReason.EXCLUDED_INDUSTRY

        return None


@dataclass
class GateDecision:
    """The gate's verdict on one contact."""

    outcome: GateOutcome
    contact: CanonicalContact
    reason: Optional[str] = None
    lead: Optional[Lead] = None

    @property
    def accepted(self) -> bool:
        return self.outcome is GateOutcome.ACCEPTED


@dataclass
class GateTally:
    """Per-batch gate counters."""

    accepted: int = 0
    rejected: int = 0
    duplicate: int = 0
    reasons: dict[str, int] = field(default_factory=dict)
    accepted_decisions: list[GateDecision] = field(default_factory=list)

    def add(self, decision: GateDecision) -> None:
        if decision.outcome is GateOutcome.ACCEPTED:
            self.accepted += 1
            self.accepted_decisions.append(decision)
        elif decision.outcome is GateOutcome.REJECTED:
            self.rejected += 1
        else:
            self.duplicate += 1
        if decision.reason:
            self.reasons[decision.reason] = self.reasons.get(decision.reason, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "rejected": self.rejected,
            "duplicate": self.duplicate,
            "reasons": dict(self.reasons),
        }


class LeadStore:
    """Lead persistence with insert-ignore semantics."""

    def __init__(self, db: DBSession):
        self.db = db

    def exists(self, email: str, owner_id: str) -> bool:
        return (
            self.db.query(Lead.id)
            .filter(Lead.email == email, Lead.owner_id == owner_id)
            .first()
            is not None
        )

    def insert_ignore(self, lead: Lead) -> bool:
        """Insert a lead, returning False if (email, owner) already exists.

        The insert runs in a SAVEPOINT so a conflict rolls back only this
        lead, never the rest of the batch.
        """
        try:
            with self.db.begin_nested():
                self.db.add(lead)
                self.db.flush()
        except IntegrityError:
            logger.info(f"Lead {lead.email} already exists for owner {lead.owner_id}")
            return False
        return True

    def list_for_run(self, run_id: int) -> list[Lead]:
        return self.db.query(Lead).filter(Lead.run_id == run_id).order_by(Lead.id.asc()).all()


def lead_from_contact(
    contact: CanonicalContact,
    owner_id: str,
    run_id: Optional[int],
    email: str,
) -> Lead:
    """Build an unsaved Lead from a gated contact."""
    custom_data: dict[str, Any] = {}
    if contact.phone_numbers:
        custom_data["phone_numbers"] = contact.phone_numbers
    for key in ("city", "state", "industry", "matched_target"):
        value = getattr(contact, key)
        if value:
            custom_data[key] = value
    if contact.raw is not None:
        custom_data["raw"] = contact.raw

    return Lead(
        owner_id=owner_id,
        email=email,
        first_name=contact.first_name or None,
        last_name=contact.last_name or None,
        title=contact.title,
        linkedin_url=contact.linkedin_url,
        company_name=(contact.organization_name or "").strip(),
        company_domain=contact.organization_domain,
        company_website=contact.organization_website,
        company_profile=contact.organization_profile,
        fit_score=contact.fit_score,
        status=LeadStatus.NEW,
        source="acquisition_run",
        run_id=run_id,
        custom_data_json=custom_data or None,
    )


class ValidationGate:
    """Applies the gate rules to contacts."""

    def __init__(
        self,
        blocked_domains: Iterable[str] = (),
        placeholder_organization_names: Iterable[str] = (),
    ):
        self.blocked_domains = [d.strip().lower() for d in blocked_domains if d and d.strip()]
        self.placeholder_names = {
            n.strip().lower() for n in placeholder_organization_names if n is not None
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "ValidationGate":
        return cls(
            blocked_domains=settings.blocked_email_domains,
            placeholder_organization_names=settings.placeholder_organization_names,
        )

    def rejection_reason(
        self, contact: CanonicalContact, rules: Optional[ContactRules] = None
    ) -> Optional[str]:
        """Apply the rejection rules (1-7). Returns None if the contact passes."""
        email = normalize_email(contact.email)
        if not email:
            return RejectReason.NO_CONTACT_CHANNEL

        if domain_in_blocklist(email_domain(email), self.blocked_domains):
            return RejectReason.BLOCKED_DOMAIN

        organization = (contact.organization_name or "").strip().lower()
        if not organization or organization in self.placeholder_names:
            return RejectReason.NO_ORGANIZATION

        if rules is not None:
            return rules.rejection_reason(contact)
        return None

    def evaluate(
        self,
        contact: CanonicalContact,
        owner_id: str,
        store: LeadStore,
        seen: set[str],
        run_id: Optional[int] = None,
        rules: Optional[ContactRules] = None,
    ) -> GateDecision:
        """Gate one contact and persist it if accepted.

        `seen` holds the normalized emails accepted earlier in the run and is
        updated in place.
        """
        reason = self.rejection_reason(contact, rules)
        if reason is not None:
            return GateDecision(GateOutcome.REJECTED, contact, reason=reason)

        email = normalize_email(contact.email)

        if email in seen:
            return GateDecision(GateOutcome.DUPLICATE, contact, reason=RejectReason.SEEN_IN_RUN)
        if store.exists(email, owner_id):
            seen.add(email)
            return GateDecision(
                GateOutcome.DUPLICATE, contact, reason=RejectReason.ALREADY_PERSISTED
            )

        lead = lead_from_contact(contact, owner_id, run_id, email)
        seen.add(email)
        if not store.insert_ignore(lead):
            return GateDecision(
                GateOutcome.DUPLICATE, contact, reason=RejectReason.PERSISTENCE_CONFLICT
            )

        return GateDecision(GateOutcome.ACCEPTED, contact, lead=lead)

    def process(
        self,
        contacts: Iterable[CanonicalContact],
        owner_id: str,
        store: LeadStore,
        seen: set[str],
        run_id: Optional[int] = None,
        rules: Optional[ContactRules] = None,
    ) -> GateTally:
        """Gate a batch of contacts."""
        tally = GateTally()
        for contact in contacts:
            tally.add(self.evaluate(contact, owner_id, store, seen, run_id=run_id, rules=rules))
        return tally
