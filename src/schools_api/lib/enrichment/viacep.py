"""ViaCEP postal code lookup provider.

Uses the ViaCEP API (https://viacep.com.br/) which resolves a Brazilian CEP
to street, neighborhood, city and state.  It returns no coordinates.
"""

import httpx
from loguru import logger

from schools_api.lib.enrichment.base import EnrichmentProviderError, PostalAddress, PostalLookup

VIACEP_API_URL = "https://viacep.com.br/ws"
DEFAULT_TIMEOUT = 5.0


class ViaCepLookup(PostalLookup):
    """ViaCEP postal code lookup provider."""

    def __init__(self, base_url: str = VIACEP_API_URL, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @property
    def provider_name(self) -> str:
        return "viacep"

    async def lookup(self, postal_code: str) -> PostalAddress | None:
        """Look up a CEP using the ViaCEP API.

        Args:
            postal_code: Eight CEP digits.

        Returns:
            PostalAddress or None if ViaCEP does not know the code.

        Raises:
            EnrichmentProviderError: On transport or service errors.
        """
        url = f"{self._base_url}/{postal_code}/json/"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url)
                # ViaCEP answers 400 for malformed codes; nothing to retry
                if response.status_code == 400:
                    return None
                response.raise_for_status()

            return self._parse_response(postal_code, response.json())

        except httpx.TimeoutException as e:
            logger.warning(f"ViaCEP timeout for postal code {postal_code}")
            raise EnrichmentProviderError("viacep", "Lookup request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"ViaCEP HTTP error {e.response.status_code}")
            raise EnrichmentProviderError(
                "viacep",
                f"Provider returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.ConnectError as e:
            logger.warning("ViaCEP connection error")
            raise EnrichmentProviderError("viacep", "Connection to lookup provider failed") from e
        except ValueError as e:
            logger.warning(f"ViaCEP returned a non-JSON body: {e}")
            raise EnrichmentProviderError("viacep", f"Failed to parse response: {e}") from e

    @staticmethod
    def _parse_response(postal_code: str, data: dict) -> PostalAddress | None:
        """Parse a ViaCEP JSON body; ``{"erro": true}`` means unknown code."""
        if not isinstance(data, dict) or data.get("erro") in (True, "true"):
            return None
        return PostalAddress(
            postal_code=postal_code,
            address_line=data.get("logradouro") or None,
            neighborhood=data.get("bairro") or None,
            city=data.get("localidade") or None,
            state=data.get("uf") or None,
        )
