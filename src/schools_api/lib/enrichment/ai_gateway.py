"""AI gateway text normalizer.

Sends sub-batches of school rows to an OpenAI-compatible chat completions
gateway and parses per-row corrections (display name, ownership, education
stage, e-mail).  Models often wrap JSON in prose or code fences, so the
first ``{...}`` block of the reply is extracted before parsing.
"""

import json
import re

import openai
from loguru import logger
from openai import AsyncOpenAI

from schools_api.lib.enrichment.base import (
    EnrichmentProviderError,
    SchoolCorrection,
    SchoolText,
    TextNormalizer,
)

DEFAULT_BASE_URL = "https://ai.gateway.lovable.dev/v1"
DEFAULT_MODEL = "google/gemini-2.5-flash"
DEFAULT_TIMEOUT = 30.0

SYSTEM_PROMPT = """You normalize records of Brazilian schools imported from spreadsheets.
For each input item return a correction object with:
- index: the item's index (integer, unchanged)
- name: the school name with proper Portuguese capitalization and accents,
  abbreviations expanded (E.E. -> Escola Estadual, EMEF -> Escola Municipal de Ensino Fundamental);
  never invent a different school
- school_type: "public" or "private", or null when unknown
- education_level: one of "early_childhood", "elementary", "high_school", "technical", "adult", or null
- email: the e-mail lower-cased and with obvious typos fixed, or null
Return ONLY valid JSON shaped as {"corrections": [ ... ]}. No extra text."""

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: str) -> dict:
    """Extract the outermost JSON object from a model reply.

    Raises:
        ValueError: If the reply holds no parseable JSON object.
    """
    match = _JSON_OBJECT_RE.search(text)
    if match is None:
        msg = "No JSON object in model output"
        raise ValueError(msg)
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        msg = "Model output is not a JSON object"
        raise ValueError(msg)
    return data


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_corrections(data: dict) -> list[SchoolCorrection]:
    """Turn a ``{"corrections": [...]}`` payload into SchoolCorrection values.

    Items without an integer ``index`` are dropped; non-string fields are
    treated as "no change".

    Raises:
        ValueError: If ``corrections`` is missing or not a list.
    """
    items = data.get("corrections")
    if not isinstance(items, list):
        msg = "Model output lacks a 'corrections' list"
        raise ValueError(msg)

    corrections: list[SchoolCorrection] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        index = item.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            continue
        corrections.append(
            SchoolCorrection(
                index=index,
                name=_optional_str(item.get("name")),
                school_type=_optional_str(item.get("school_type")),
                education_level=_optional_str(item.get("education_level")),
                email=_optional_str(item.get("email")),
            )
        )
    return corrections


class AIGatewayNormalizer(TextNormalizer):
    """Chat-completions backed school text normalizer."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    @property
    def provider_name(self) -> str:
        return "ai_gateway"

    async def normalize(self, items: list[SchoolText]) -> list[SchoolCorrection]:
        """Ask the gateway for corrections of one sub-batch.

        Args:
            items: Rows to normalize.

        Returns:
            Parsed corrections (possibly fewer than ``items``).

        Raises:
            EnrichmentProviderError: On timeout, rate limit, exhausted credits,
                other HTTP errors, or unparseable output.
        """
        if not items:
            return []

        payload = [
            {
                "index": item.index,
                "name": item.name,
                "city": item.city,
                "school_type_hint": item.school_type_hint,
                "education_level_hint": item.education_level_hint,
                "email": item.email,
            }
            for item in items
        ]

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": json.dumps({"items": payload}, ensure_ascii=False)},
                ],
                temperature=0.1,
            )
        except openai.APITimeoutError as e:
            logger.warning(f"AI gateway timeout for {len(items)} rows")
            raise EnrichmentProviderError("ai_gateway", "Normalization request timed out") from e
        except openai.RateLimitError as e:
            logger.warning("AI gateway rate limit exceeded")
            raise EnrichmentProviderError("ai_gateway", "Rate limit exceeded", status_code=429) from e
        except openai.APIStatusError as e:
            # 402: gateway credits exhausted
            logger.warning(f"AI gateway HTTP error {e.status_code}")
            raise EnrichmentProviderError(
                "ai_gateway",
                f"Provider returned HTTP {e.status_code}",
                status_code=e.status_code,
            ) from e
        except openai.APIConnectionError as e:
            logger.warning("AI gateway connection error")
            raise EnrichmentProviderError("ai_gateway", "Connection to AI gateway failed") from e
        except openai.OpenAIError as e:
            logger.warning(f"AI gateway client error: {e}")
            raise EnrichmentProviderError("ai_gateway", f"Unexpected error: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise EnrichmentProviderError("ai_gateway", "Empty model output")

        try:
            return parse_corrections(extract_json_object(content))
        except ValueError as e:
            logger.warning(f"AI gateway returned unusable output: {e}")
            raise EnrichmentProviderError("ai_gateway", f"Failed to parse model output: {e}") from e
