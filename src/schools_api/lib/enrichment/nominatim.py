"""OpenStreetMap Nominatim postal code lookup provider.

Uses the Nominatim search API (https://nominatim.org/release-docs/develop/api/Search/)
with a ``"XXXXX-XXX, Brasil"`` query.  Many CEPs are not indexed
individually, so an empty answer is retried with the 5-digit prefix, which
still locates the city.  Free but rate-limited to 1 req/sec.
"""

import httpx
from loguru import logger

from schools_api.lib.enrichment.base import EnrichmentProviderError, PostalAddress, PostalLookup
from schools_api.lib.importer.normalize import format_postal_code

NOMINATIM_API_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "schools-api/1.0"


class NominatimPostalLookup(PostalLookup):
    """OpenStreetMap Nominatim postal code lookup provider."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        email: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._timeout = timeout
        self._email = email
        self._user_agent = user_agent

    @property
    def provider_name(self) -> str:
        return "nominatim"

    async def lookup(self, postal_code: str) -> PostalAddress | None:
        """Look up a CEP using the Nominatim API.

        Args:
            postal_code: Eight CEP digits.

        Returns:
            PostalAddress or None if neither the full code nor its prefix matched.

        Raises:
            EnrichmentProviderError: On transport or service errors.
        """
        headers = {"User-Agent": self._user_agent, "Accept": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, headers=headers) as client:
                data = await self._search(client, f"{format_postal_code(postal_code)}, Brasil")
                if not data:
                    logger.debug(f"Nominatim has no match for {postal_code}, retrying with prefix")
                    data = await self._search(client, f"{postal_code[:5]}, Brasil")

            return self._parse_response(postal_code, data)

        except httpx.TimeoutException as e:
            logger.warning(f"Nominatim timeout for postal code {postal_code}")
            raise EnrichmentProviderError("nominatim", "Lookup request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Nominatim HTTP error {e.response.status_code}")
            raise EnrichmentProviderError(
                "nominatim",
                f"Provider returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.ConnectError as e:
            logger.warning("Nominatim connection error")
            raise EnrichmentProviderError("nominatim", "Connection to lookup provider failed") from e

    async def _search(self, client: httpx.AsyncClient, query: str) -> list[dict]:
        params: dict[str, str | int] = {
            "q": query,
            "format": "json",
            "limit": 1,
            "addressdetails": 1,
            "countrycodes": "br",
        }
        if self._email:
            params["email"] = self._email
        response = await client.get(NOMINATIM_API_URL, params=params)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise EnrichmentProviderError("nominatim", f"Failed to parse response: {e}") from e

    @staticmethod
    def _parse_response(postal_code: str, data: list[dict]) -> PostalAddress | None:
        """Parse Nominatim results into a PostalAddress.

        Args:
            postal_code: The code that was looked up.
            data: Raw JSON response (list of results) from Nominatim.

        Returns:
            PostalAddress or None if no match found.
        """
        if not data:
            return None

        best = data[0]
        try:
            lat = float(best["lat"])
            lon = float(best["lon"])
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to parse Nominatim response: {e}")
            raise EnrichmentProviderError("nominatim", f"Failed to parse response: {e}") from e

        address = best.get("address") or {}
        return PostalAddress(
            postal_code=postal_code,
            address_line=address.get("road"),
            neighborhood=address.get("suburb") or address.get("neighbourhood"),
            city=address.get("city") or address.get("town") or address.get("municipality"),
            state=address.get("state"),
            latitude=lat,
            longitude=lon,
        )
