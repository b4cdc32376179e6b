"""Unit tests for the Nominatim postal lookup provider."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from schools_api.lib.enrichment.base import EnrichmentProviderError
from schools_api.lib.enrichment.nominatim import NominatimPostalLookup

RESULT = {
    "lat": "-22.8184",
    "lon": "-47.0647",
    "address": {
        "road": "Rua Sérgio Buarque de Holanda",
        "suburb": "Barão Geraldo",
        "city": "Campinas",
        "state": "São Paulo",
        "postcode": "13083-859",
    },
}


def _response(body: object) -> MagicMock:
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = body
    response.raise_for_status = MagicMock()
    return response


class TestNominatimParsing:
    """Tests for Nominatim response parsing."""

    def test_successful_match(self) -> None:
        result = NominatimPostalLookup._parse_response("13083859", [RESULT])
        assert result is not None
        assert result.latitude == pytest.approx(-22.8184)
        assert result.longitude == pytest.approx(-47.0647)
        assert result.address_line == "Rua Sérgio Buarque de Holanda"
        assert result.neighborhood == "Barão Geraldo"
        assert result.city == "Campinas"
        assert result.state == "São Paulo"

    def test_town_used_when_no_city(self) -> None:
        data = [{"lat": "-22.5", "lon": "-47.1", "address": {"town": "Engenheiro Coelho"}}]
        result = NominatimPostalLookup._parse_response("13165000", data)
        assert result is not None
        assert result.city == "Engenheiro Coelho"

    def test_empty_results(self) -> None:
        assert NominatimPostalLookup._parse_response("13083859", []) is None

    def test_missing_coordinates_raises(self) -> None:
        with pytest.raises(EnrichmentProviderError, match="Failed to parse"):
            NominatimPostalLookup._parse_response("13083859", [{"address": {}}])


class TestNominatimLookup:
    """Tests for request handling."""

    async def test_query_uses_formatted_code(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=_response([RESULT])) as mock_get:
            result = await NominatimPostalLookup(email="ops@example.org").lookup("13083859")

        assert result is not None
        params = mock_get.await_args.kwargs["params"]
        assert params["q"] == "13083-859, Brasil"
        assert params["countrycodes"] == "br"
        assert params["email"] == "ops@example.org"

    async def test_retries_with_prefix(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = [_response([]), _response([RESULT])]
            result = await NominatimPostalLookup().lookup("13083859")

        assert result is not None
        queries = [call.kwargs["params"]["q"] for call in mock_get.await_args_list]
        assert queries == ["13083-859, Brasil", "13083, Brasil"]

    async def test_no_match(self) -> None:
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=_response([])):
            assert await NominatimPostalLookup().lookup("99999999") is None

    async def test_timeout_raises_provider_error(self) -> None:
        with (
            patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get,
            pytest.raises(EnrichmentProviderError) as exc_info,
        ):
            mock_get.side_effect = httpx.TimeoutException("timed out")
            await NominatimPostalLookup().lookup("13083859")

        assert exc_info.value.provider_name == "nominatim"

    async def test_rate_limited_raises_provider_error(self) -> None:
        limited = httpx.Response(status_code=429, request=httpx.Request("GET", "http://test"))
        with (
            patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get,
            pytest.raises(EnrichmentProviderError) as exc_info,
        ):
            mock_get.side_effect = httpx.HTTPStatusError("Too Many Requests", request=limited.request, response=limited)
            await NominatimPostalLookup().lookup("13083859")

        assert exc_info.value.status_code == 429
