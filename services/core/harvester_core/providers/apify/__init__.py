"""Apify provider: Apollo domain scraper actor."""

from harvester_core.providers.apify.client import ApifyClient
from harvester_core.providers.apify.mapping import APOLLO_DOMAIN_MAPPING
from harvester_core.providers.apify.payload import (
    build_apollo_domain_payload,
    map_seniorities,
)

__all__ = [
    "ApifyClient",
    "APOLLO_DOMAIN_MAPPING",
    "build_apollo_domain_payload",
    "map_seniorities",
]
