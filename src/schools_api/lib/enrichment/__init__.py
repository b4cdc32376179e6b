"""Enrichment library: AI text normalization and postal code lookups.

Public API:
    - EnrichmentStage / EnrichmentResult: batch enrichment
    - TextNormalizer / PostalLookup: abstract provider interfaces
    - AIGatewayNormalizer: OpenAI-compatible chat completions normalizer
    - ViaCepLookup / NominatimPostalLookup: postal code providers
    - CascadingPostalLookup: provider fallback chain
    - PostalLookupCache: per-invocation lookup cache
    - get_postal_lookup / get_text_normalizer: factories driven by settings
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from schools_api.lib.enrichment.ai_gateway import AIGatewayNormalizer
from schools_api.lib.enrichment.base import (
    EnrichmentProviderError,
    PostalAddress,
    PostalLookup,
    SchoolCorrection,
    SchoolText,
    TextNormalizer,
)
from schools_api.lib.enrichment.cache import PostalLookupCache
from schools_api.lib.enrichment.cascade import CascadingPostalLookup
from schools_api.lib.enrichment.nominatim import NominatimPostalLookup
from schools_api.lib.enrichment.stage import EnrichmentResult, EnrichmentStage
from schools_api.lib.enrichment.viacep import ViaCepLookup

if TYPE_CHECKING:
    from schools_api.core.config import Settings

# Postal lookup registry
_POSTAL_PROVIDERS: dict[str, type[PostalLookup]] = {
    "viacep": ViaCepLookup,
    "nominatim": NominatimPostalLookup,
}


def get_available_postal_providers() -> list[str]:
    """Return the names of all registered postal lookup providers."""
    return sorted(_POSTAL_PROVIDERS.keys())


def get_postal_provider(provider: str, **kwargs: Any) -> PostalLookup:
    """Get a postal lookup instance by provider name.

    Args:
        provider: Provider name (e.g., "viacep").
        **kwargs: Arguments forwarded to the provider constructor.

    Returns:
        An instance of the requested provider.

    Raises:
        ValueError: If the provider is not registered.
    """
    cls = _POSTAL_PROVIDERS.get(provider)
    if cls is None:
        msg = f"Unknown postal lookup provider: {provider!r}. Available: {list(_POSTAL_PROVIDERS.keys())}"
        raise ValueError(msg)
    return cls(**kwargs)


def get_postal_lookup(settings: Settings) -> PostalLookup | None:
    """Build the postal lookup chain configured in settings.

    Args:
        settings: Application settings.

    Returns:
        A single provider, a CascadingPostalLookup over several, or None
        when lookups are disabled or no known provider is listed.
    """
    if not settings.postal_lookup_enabled:
        return None

    provider_kwargs: dict[str, dict[str, Any]] = {
        "viacep": {"base_url": settings.viacep_base_url, "timeout": settings.viacep_timeout},
        "nominatim": {"timeout": settings.nominatim_timeout, "email": settings.nominatim_email},
    }

    providers: list[PostalLookup] = []
    seen: set[str] = set()
    for name in settings.postal_lookup_order_list:
        if name in seen:
            continue
        seen.add(name)
        if name not in _POSTAL_PROVIDERS:
            logger.warning(f"Ignoring unknown postal lookup provider {name!r}")
            continue
        providers.append(get_postal_provider(name, **provider_kwargs[name]))

    if not providers:
        return None
    if len(providers) == 1:
        return providers[0]
    return CascadingPostalLookup(providers)


def get_text_normalizer(settings: Settings) -> TextNormalizer | None:
    """Build the AI text normalizer, or None when disabled or unconfigured."""
    if not settings.ai_enrichment_enabled:
        return None
    if not settings.ai_gateway_api_key:
        logger.warning("AI enrichment enabled but AI_GATEWAY_API_KEY is not set; rows pass through unchanged")
        return None
    return AIGatewayNormalizer(
        api_key=settings.ai_gateway_api_key,
        base_url=settings.ai_gateway_base_url,
        model=settings.ai_model,
        timeout=settings.ai_timeout,
    )


def build_enrichment_stage(settings: Settings) -> EnrichmentStage:
    """Assemble the enrichment stage from settings."""
    return EnrichmentStage(
        normalizer=get_text_normalizer(settings),
        postal_lookup=get_postal_lookup(settings),
        sub_batch_size=settings.enrichment_sub_batch_size,
        max_concurrency=settings.enrichment_max_concurrency,
        postal_max_concurrency=settings.postal_lookup_max_concurrency,
        apply_name_corrections=settings.ai_name_corrections_enabled,
    )


__all__ = [
    "AIGatewayNormalizer",
    "CascadingPostalLookup",
    "EnrichmentProviderError",
    "EnrichmentResult",
    "EnrichmentStage",
    "NominatimPostalLookup",
    "PostalAddress",
    "PostalLookup",
    "PostalLookupCache",
    "SchoolCorrection",
    "SchoolText",
    "TextNormalizer",
    "ViaCepLookup",
    "build_enrichment_stage",
    "get_available_postal_providers",
    "get_postal_lookup",
    "get_postal_provider",
    "get_text_normalizer",
]
