"""Normalization of raw provider records into CanonicalContacts.

Field extraction is table driven: each provider ships a FieldMapping that
names, for every canonical field, the provider keys to try in order. Records
are validated against the mapping before anything is extracted, so a
provider schema change fails the batch instead of producing contacts named
"Unknown".

The normalizer is pure: no I/O, no persistence. It never drops a record for
a missing email; that decision belongs to the validation gate.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from harvester_core.domain.domains import clean_domain
from harvester_core.providers.base import (
    CanonicalContact,
    RawProviderRecord,
    RecordSchemaError,
    TargetOrganization,
)


@dataclass(frozen=True)
class FieldMapping:
    """Canonical field -> provider keys, tried in order."""

    first_name: tuple[str, ...] = ()
    last_name: tuple[str, ...] = ()
    full_name: tuple[str, ...] = ()
    email: tuple[str, ...] = ()
    title: tuple[str, ...] = ()
    linkedin_url: tuple[str, ...] = ()
    organization_name: tuple[str, ...] = ()
    organization_domain: tuple[str, ...] = ()
    organization_website: tuple[str, ...] = ()
    city: tuple[str, ...] = ()
    state: tuple[str, ...] = ()
    industry: tuple[str, ...] = ()
    # (provider key, phone type) for scalar phone fields
    phone_fields: tuple[tuple[str, str], ...] = ()
    # Keys holding a list of phone numbers (strings or objects)
    phone_lists: tuple[str, ...] = ()

    @property
    def name_keys(self) -> tuple[str, ...]:
        return self.first_name + self.last_name + self.full_name

    @property
    def organization_keys(self) -> tuple[str, ...]:
        return self.organization_name + self.organization_domain + self.organization_website


def _first_value(record: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    """Return the first non-empty string value among `keys`."""
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            value = str(value)
        value = value.strip()
        if value:
            return value
    return None


def split_full_name(full_name: Optional[str]) -> tuple[str, str]:
    """Split on whitespace: first token is the first name, the rest the last name."""
    if not full_name:
        return "", ""
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def match_target(
    organization_name: Optional[str],
    organization_domain: Optional[str],
    targets: list[TargetOrganization],
) -> Optional[TargetOrganization]:
    """Find the target a record belongs to.

    Tries a loose domain match first (either domain contained in the other),
    then a case-insensitive name containment match in either direction.
    """
    if organization_domain:
        for target in targets:
            target_domain = clean_domain(target.domain) or clean_domain(target.website)
            if not target_domain:
                continue
            if organization_domain in target_domain or target_domain in organization_domain:
                return target

    if organization_name:
        name = organization_name.lower()
        for target in targets:
            target_name = (target.name or "").strip().lower()
            if not target_name:
                continue
            if name in target_name or target_name in name:
                return target

    return None


class Normalizer:
    """Maps raw provider records onto CanonicalContacts."""

    def __init__(self, mapping: FieldMapping):
        self.mapping = mapping

    def validate(self, record: Any) -> None:
        """Check a record against the mapping.

        Raises:
            RecordSchemaError: If the record is not a mapping, or carries none
                of the name keys or none of the organization keys.
        """
        if not isinstance(record, Mapping):
            raise RecordSchemaError(
                f"Expected a record object, got {type(record).__name__}"
            )
        if self.mapping.name_keys and not any(k in record for k in self.mapping.name_keys):
            raise RecordSchemaError(
                f"Record has none of the name fields {list(self.mapping.name_keys)}"
            )
        if self.mapping.organization_keys and not any(
            k in record for k in self.mapping.organization_keys
        ):
            raise RecordSchemaError(
                f"Record has none of the organization fields {list(self.mapping.organization_keys)}"
            )

    def normalize(
        self,
        record: RawProviderRecord,
        targets: list[TargetOrganization],
    ) -> CanonicalContact:
        """Normalize a single record.

        Raises:
            RecordSchemaError: If the record does not match the mapping.
        """
        self.validate(record)
        m = self.mapping

        first_name = _first_value(record, m.first_name) or ""
        last_name = _first_value(record, m.last_name) or ""
        if not first_name and not last_name:
            first_name, last_name = split_full_name(_first_value(record, m.full_name))

        organization_name = _first_value(record, m.organization_name)
        website = _first_value(record, m.organization_website)
        domain = clean_domain(_first_value(record, m.organization_domain)) or clean_domain(website)

        target = match_target(organization_name, domain, targets)

        contact = CanonicalContact(
            first_name=first_name,
            last_name=last_name,
            email=_first_value(record, m.email),
            title=_first_value(record, m.title),
            linkedin_url=_first_value(record, m.linkedin_url),
            organization_name=organization_name,
            organization_domain=domain,
            organization_website=website,
            city=_first_value(record, m.city),
            state=_first_value(record, m.state),
            industry=_first_value(record, m.industry),
            phone_numbers=self.extract_phones(record),
            raw=dict(record),
        )

        if target is not None:
            contact.organization_name = contact.organization_name or target.name
            contact.organization_domain = contact.organization_domain or clean_domain(target.domain)
            contact.organization_website = contact.organization_website or target.website
            contact.organization_profile = target.profile
            contact.fit_score = target.fit_score
            contact.matched_target = target.name

        return contact

    def normalize_all(
        self,
        records: list[RawProviderRecord],
        targets: list[TargetOrganization],
    ) -> list[CanonicalContact]:
        """Normalize a batch; the first schema mismatch fails the whole batch."""
        return [self.normalize(record, targets) for record in records]

    def extract_phones(self, record: Mapping[str, Any]) -> list[dict[str, str]]:
        """Gather phone numbers from every mapped field, deduplicated by number."""
        phones: list[dict[str, str]] = []

        for key, phone_type in self.mapping.phone_fields:
            value = _first_value(record, (key,))
            if value:
                phones.append({"type": phone_type, "number": value})

        for key in self.mapping.phone_lists:
            entries = record.get(key)
            if not isinstance(entries, list):
                continue
            for entry in entries:
                if isinstance(entry, str):
                    if entry.strip():
                        phones.append({"type": "other", "number": entry.strip()})
                elif isinstance(entry, Mapping):
                    number = _first_value(entry, ("raw_number", "number", "sanitized_number"))
                    if number:
                        phones.append({"type": str(entry.get("type") or "other"), "number": number})

        deduped: dict[str, dict[str, str]] = {}
        for phone in phones:
            deduped.setdefault(phone["number"], phone)
        return list(deduped.values())
