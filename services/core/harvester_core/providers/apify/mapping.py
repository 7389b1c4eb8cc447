"""Field mapping for the Apollo domain scraper actor's dataset records."""

from harvester_core.domain.services.normalizer import FieldMapping


APOLLO_DOMAIN_MAPPING = FieldMapping(
    first_name=("firstName", "first_name"),
    last_name=("lastName", "last_name"),
    full_name=("name", "fullName", "full_name"),
    email=("email",),
    title=("position", "title"),
    linkedin_url=("linkedinUrl", "linkedin_url"),
    organization_name=("organizationName", "organization_name", "companyName"),
    organization_domain=("organizationDomain", "companyDomain"),
    organization_website=("organizationWebsite", "organization_website", "companyWebsite"),
    city=("city",),
    state=("state",),
    industry=("organizationIndustry", "industry"),
    phone_fields=(
        ("phone", "generic"),
        ("mobile_phone", "mobile"),
        ("corporate_phone", "work"),
        ("home_phone", "home"),
    ),
    phone_lists=("phone_numbers",),
)
