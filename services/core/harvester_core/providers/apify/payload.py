"""Input payload builder for the Apollo domain scraper actor.

Turns provider-agnostic filters into the actor's input schema. The actor
accepts only a fixed set of seniority values, so user-facing labels are
expanded onto that set and anything else is dropped.
"""

from typing import Any, Optional

from harvester_core.domain.domains import clean_domains
from harvester_core.providers.base import TargetOrganization


DEFAULT_TITLES = [
    "Executive Director",
    "Director Of Operations",
    "Director Of Sales",
    "Director Of Business Development",
    "Founder",
    "Co-Founder",
    "General Manager",
    "Head Of Operations",
    "Head Of Business Development",
    "Founding Partner",
    "Co-Owner",
    "Business Owner",
    "CEO/President/Owner",
    "Executive Vice President",
    "Principal",
    "Managing Director",
    "Director of Investments",
    "Director of Developments",
    "Partner",
    "Managing Partner",
    "CEO",
    "President",
    "Vice President",
    "CIO",
    "COO",
]

DEFAULT_SENIORITIES = [
    "Founder",
    "Chairman",
    "President",
    "CEO",
    "CXO",
    "Vice President",
    "Director",
    "Head",
]

ALLOWED_SENIORITIES = frozenset({
    "Founder",
    "Chairman",
    "President",
    "CEO",
    "CXO",
    "Vice President",
    "Director",
    "Head",
    "Manager",
    "Senior",
    "Junior",
    "Entry Level",
    "Executive",
})

SENIORITY_LABELS = {
    "Partner / Principal": ["Executive", "Director"],
    "C-Level (CEO, CIO, COO)": ["CXO", "CEO", "President", "Founder"],
    "Managing Director": ["Director", "Head"],
    "VP / Director": ["Vice President", "Director"],
    "Head of X": ["Head"],
    "Manager / Associate": ["Manager", "Senior"],
    "Partner": ["Executive", "Founder"],
    "Principal": ["Executive", "Founder"],
    "Owner": ["Executive", "Founder"],
}

DEFAULT_COUNTRIES = ["Canada", "United States"]

DEFAULT_EMPLOYEE_SIZES = [
    "11 - 50",
    "51 - 200",
    "201 - 500",
    "501 - 1000",
    "1001 - 5000",
    "5001 - 10000",
    "10000+",
]


def map_seniorities(labels: Optional[list[str]]) -> list[str]:
    """Expand seniority labels onto the actor's allowed values.

    Unknown labels are dropped; the result is deduplicated in order.
    """
    mapped: list[str] = []
    for label in labels or []:
        for value in SENIORITY_LABELS.get(label, [label]):
            if value in ALLOWED_SENIORITIES and value not in mapped:
                mapped.append(value)
    return mapped


def target_domains(targets: list[TargetOrganization]) -> list[str]:
    """Collect the clean, deduplicated domains of a target list."""
    return clean_domains(t.domain or t.website for t in targets)


def build_apollo_domain_payload(
    targets: list[TargetOrganization],
    filters: Optional[dict[str, Any]] = None,
    max_results: int = 1000,
    max_cost: float = 1.0,
) -> dict[str, Any]:
    """Build the actor input for a batch of targets.

    Args:
        targets: Organizations to search. Targets without a usable domain
            are left out of the payload.
        filters: Optional `job_titles`, `seniority`, `countries`,
            `employee_sizes` and `max_results` overrides.
        max_results: Default cap on returned contacts.
        max_cost: Spend cap passed to the actor, in USD.
    """
    filters = filters or {}

    seniorities = map_seniorities(filters.get("seniority"))
    titles = filters.get("job_titles") or []

    return {
        "companyDomain": target_domains(targets),
        "companyCountry": filters.get("countries") or list(DEFAULT_COUNTRIES),
        "companyEmployeeSize": filters.get("employee_sizes") or list(DEFAULT_EMPLOYEE_SIZES),
        "contactEmailStatus": "verified",
        "includeEmails": True,
        "personTitle": titles or list(DEFAULT_TITLES),
        "seniority": seniorities or list(DEFAULT_SENIORITIES),
        "totalResults": filters.get("max_results") or max_results,
        "maxCost": max_cost,
    }
