"""Postal lookup fallback across several providers."""

from loguru import logger

from schools_api.lib.enrichment.base import EnrichmentProviderError, PostalAddress, PostalLookup


class CascadingPostalLookup(PostalLookup):
    """Query providers in order; the first hit wins.

    A provider error falls through to the next provider.  The lookup only
    raises when every provider errored; "not found" from all of them is a
    plain ``None``.
    """

    def __init__(self, providers: list[PostalLookup]) -> None:
        if not providers:
            msg = "CascadingPostalLookup needs at least one provider"
            raise ValueError(msg)
        self._providers = providers

    @property
    def provider_name(self) -> str:
        return "+".join(p.provider_name for p in self._providers)

    @property
    def providers(self) -> list[PostalLookup]:
        return list(self._providers)

    async def lookup(self, postal_code: str) -> PostalAddress | None:
        errors: list[EnrichmentProviderError] = []
        for provider in self._providers:
            try:
                result = await provider.lookup(postal_code)
            except EnrichmentProviderError as e:
                logger.debug(f"Postal lookup {provider.provider_name} failed for {postal_code}: {e.message}")
                errors.append(e)
                continue
            if result is not None:
                return result

        if len(errors) == len(self._providers):
            raise EnrichmentProviderError(self.provider_name, "; ".join(str(e) for e in errors))
        return None
