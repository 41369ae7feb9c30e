"""Brand gazetteer: the literal names matched in provider responses.

A tenant's gazetteer is its own brand name and variants (org-brand entries),
any competitors the tenant declared, and a static list of common industry
brands. Entries shorter than three characters are dropped, and entries are
de-duplicated by normalized form with org-brand entries taking precedence.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import lru_cache

MIN_ENTRY_LENGTH = 3

# Well-known SaaS / tech brands. Names that are also ordinary words ("Apple",
# "Slack", "Square", "Zoom", "Notion") are left out: literal matching would
# count prose like "zoom in" or "square footage" as mentions.
COMMON_INDUSTRY_BRANDS: tuple[str, ...] = (
    # Big tech
    "Microsoft", "Google", "Amazon", "IBM", "Oracle", "SAP", "Adobe",
    "AWS", "Azure", "Google Cloud", "Cloudflare", "DigitalOcean", "Heroku", "Vercel", "Netlify",
    # CRM / sales
    "HubSpot", "Salesforce", "Zoho CRM", "Pipedrive", "Freshworks", "Freshsales", "Freshdesk",
    # Project management / collaboration
    "Monday.com", "Asana", "Trello", "ClickUp", "Jira", "Atlassian", "Airtable", "Smartsheet",
    "Microsoft Teams", "Dropbox", "GitHub", "GitLab",
    # Email / marketing automation
    "Mailchimp", "Constant Contact", "ActiveCampaign", "ConvertKit", "Klaviyo", "GetResponse",
    "AWeber", "Campaign Monitor", "Marketo", "Pardot", "Eloqua", "SharpSpring", "SendGrid",
    # SEO / content
    "SEMrush", "Ahrefs", "Moz", "BuzzSumo", "Similarweb", "Yoast",
    # Analytics / optimisation
    "Google Analytics", "Adobe Analytics", "Mixpanel", "Hotjar", "Crazy Egg",
    "Optimizely", "VWO", "Tableau", "Datadog",
    # Social
    "Hootsuite", "Sprout Social", "SocialBee", "CoSchedule",
    # Design / automation
    "Canva", "Figma", "Zapier", "IFTTT",
    # Support / communication
    "Zendesk", "LiveChat", "Twilio",
    # Commerce / payments / finance
    "Shopify", "BigCommerce", "WooCommerce", "Wix", "Squarespace", "WordPress",
    "Stripe", "PayPal", "QuickBooks", "Xero", "FreshBooks",
    # HR / ops
    "ServiceNow", "Okta", "DocuSign", "Calendly",
)


def normalize(name: str) -> str:
    """Lower-case, trim and collapse inner whitespace."""
    return " ".join(name.split()).lower()


@lru_cache(maxsize=4096)
def _compile(name: str) -> re.Pattern[str]:
    # Whole-string match: no word character may touch either end of the entry
    body = r"\s+".join(re.escape(part) for part in name.split())
    return re.compile(r"(?<!\w)" + body + r"(?!\w)", re.IGNORECASE)


@dataclass(frozen=True)
class GazetteerEntry:
    name: str
    normalized: str
    is_org_brand: bool = False

    @property
    def pattern(self) -> re.Pattern[str]:
        return _compile(self.name)


@dataclass
class Gazetteer:
    entries: list[GazetteerEntry] = field(default_factory=list)

    @property
    def org_names(self) -> frozenset[str]:
        return frozenset(e.normalized for e in self.entries if e.is_org_brand)

    def __len__(self) -> int:
        return len(self.entries)


def build_gazetteer(
    brand_name: str | None,
    brand_variants: Iterable[str] = (),
    competitors: Iterable[str] = (),
    *,
    include_common: bool = True,
) -> Gazetteer:
    """Assemble a tenant's gazetteer.

    Args:
        brand_name: The tenant's display brand.
        brand_variants: Alternative spellings of the tenant's brand.
        competitors: Extra names declared by the tenant.
        include_common: Append ``COMMON_INDUSTRY_BRANDS``.
    """
    entries: list[GazetteerEntry] = []
    seen: set[str] = set()

    def _add(raw: str | None, is_org: bool) -> None:
        if not isinstance(raw, str):
            return
        name = " ".join(raw.split())
        if len(name) < MIN_ENTRY_LENGTH:
            return
        key = normalize(name)
        if key in seen:
            return
        seen.add(key)
        entries.append(GazetteerEntry(name=name, normalized=key, is_org_brand=is_org))

    _add(brand_name, True)
    for variant in brand_variants:
        _add(variant, True)
    for name in competitors:
        _add(name, False)
    if include_common:
        for name in COMMON_INDUSTRY_BRANDS:
            _add(name, False)

    return Gazetteer(entries=entries)


def gazetteer_for_tenant(tenant) -> Gazetteer:
    """Gazetteer seeded from a ``Tenant`` row."""
    return build_gazetteer(
        tenant.name,
        tenant.brand_variants or [],
        tenant.competitors or [],
    )
