"""Domain name helpers shared by the payload builder, normalizer and gate.

Provides:
- clean_domain: Reduce a URL or host to a bare lowercase domain
- email_domain: Extract the domain part of an email address
- domain_in_blocklist: Exact or parent-domain blocklist match
"""

import re
from typing import Iterable, Optional


_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def clean_domain(value: Optional[str]) -> Optional[str]:
    """Strip scheme, `www.`, path, port and credentials from a URL or host.

    Returns:
        The bare lowercase domain, or None if nothing usable remains.
        A usable domain contains a dot and no whitespace.
    """
    if not value:
        return None

    domain = value.strip().lower()
    domain = _SCHEME_RE.sub("", domain)
    domain = domain.split("/", 1)[0]
    domain = domain.split("?", 1)[0]
    domain = domain.split("#", 1)[0]
    domain = domain.rsplit("@", 1)[-1]
    domain = domain.split(":", 1)[0]
    if domain.startswith("www."):
        domain = domain[4:]
    domain = domain.strip(".")

    if not domain or "." not in domain or re.search(r"\s", domain):
        return None
    return domain


def clean_domains(values: Iterable[Optional[str]]) -> list[str]:
    """Clean and dedupe a list of domains, preserving first-seen order."""
    seen: set[str] = set()
    result = []
    for value in values:
        domain = clean_domain(value)
        if domain and domain not in seen:
            seen.add(domain)
            result.append(domain)
    return result


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lowercase and trim an email. Empty values become None."""
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def email_domain(email: Optional[str]) -> Optional[str]:
    """Return the lowercase domain of an email address, if any."""
    email = normalize_email(email)
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip(".")
    return domain or None


def domain_within(domain: Optional[str], domains: Iterable[str]) -> bool:
    """Check whether a domain is one of `domains` or a subdomain of one.

    `mail.mailinator.com` is within `mailinator.com`; `notmailinator.com`
    is not.
    """
    if not domain:
        return False
    domain = domain.lower()
    for parent in domains:
        parent = parent.strip().lower()
        if not parent:
            continue
        if domain == parent or domain.endswith("." + parent):
            return True
    return False


def domain_in_blocklist(domain: Optional[str], blocklist: Iterable[str]) -> bool:
    """Check a domain (or any parent of it) against a blocklist."""
    return domain_within(domain, blocklist)
