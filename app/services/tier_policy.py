"""Subscription tier -> providers and daily prompt quota."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_TIER = "free"


@dataclass(frozen=True)
class TierPolicy:
    providers: tuple[str, ...]
    prompts_per_day: int


TIER_POLICIES: dict[str, TierPolicy] = {
    "free": TierPolicy(providers=("openai",), prompts_per_day=5),
    "starter": TierPolicy(providers=("openai", "perplexity"), prompts_per_day=25),
    "growth": TierPolicy(providers=("openai", "perplexity", "gemini"), prompts_per_day=100),
    "pro": TierPolicy(providers=("openai", "perplexity", "gemini"), prompts_per_day=300),
}


def policy_for(plan: str | None) -> TierPolicy:
    """Unknown or missing plans get the free policy."""
    return TIER_POLICIES.get((plan or DEFAULT_TIER).lower(), TIER_POLICIES[DEFAULT_TIER])


def provider_allowed(plan: str | None, provider_name: str, allowed_tiers: list[str] | None = None) -> bool:
    """Whether a tenant on *plan* may use *provider_name*.

    A provider row's own ``allowed_tiers`` list, when non-empty, replaces the
    default policy for that provider.
    """
    tier = (plan or DEFAULT_TIER).lower()
    if allowed_tiers:
        return tier in {t.lower() for t in allowed_tiers}
    return provider_name in policy_for(tier).providers
