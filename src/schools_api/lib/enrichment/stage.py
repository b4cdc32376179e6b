"""Enrichment stage: raw rows in, normalized school candidates out.

Rows lacking a name or a usable postal code are skipped up front.  The rest
go through two optional, independent fan-outs that run concurrently:

* AI text normalization in sub-batches, bounded by a semaphore;
* postal lookups for rows missing address, city or state, one lookup per
  distinct code thanks to a per-call cache.

Provider errors degrade the affected rows to pass-through values; they never
abort the batch.
"""

import asyncio
from dataclasses import dataclass, field

from loguru import logger

from schools_api.lib.enrichment.base import (
    EnrichmentProviderError,
    PostalAddress,
    PostalLookup,
    SchoolCorrection,
    SchoolText,
    TextNormalizer,
)
from schools_api.lib.enrichment.cache import PostalLookupCache
from schools_api.lib.importer.normalize import (
    clean_text,
    format_phone,
    format_postal_code,
    generate_slug,
    normalize_email,
    normalize_postal_code,
    normalize_state,
    parse_education_level,
    parse_school_type,
    record_fingerprint,
)
from schools_api.lib.importer.records import NormalizedSchoolRecord, RawSchoolRecord
from schools_api.lib.importer.validator import mandatory_field_errors, validate_batch
from schools_api.lib.jobs.errors import RowError, enrichment_skip


@dataclass
class EnrichmentResult:
    """Outcome of enriching one batch."""

    records: list[NormalizedSchoolRecord] = field(default_factory=list)
    skipped: list[RowError] = field(default_factory=list)
    ai_applied: int = 0
    ai_failed_sub_batches: int = 0
    postal_failed_lookups: int = 0
    cache_hits: int = 0
    cache_misses: int = 0


def _needs_postal_lookup(record: RawSchoolRecord) -> bool:
    return not (record.address and record.city and record.state)


class EnrichmentStage:
    """Turns raw rows into NormalizedSchoolRecord values.

    Args:
        normalizer: Optional AI text normalizer.
        postal_lookup: Optional postal code lookup.
        sub_batch_size: Rows per normalizer call.
        max_concurrency: Concurrent normalizer calls.
        postal_max_concurrency: Concurrent postal lookups.
        apply_name_corrections: Whether corrected names replace source names.
    """

    def __init__(
        self,
        normalizer: TextNormalizer | None = None,
        postal_lookup: PostalLookup | None = None,
        *,
        sub_batch_size: int = 50,
        max_concurrency: int = 5,
        postal_max_concurrency: int = 5,
        apply_name_corrections: bool = True,
    ) -> None:
        if sub_batch_size <= 0:
            msg = "sub_batch_size must be positive"
            raise ValueError(msg)
        self._normalizer = normalizer
        self._postal_lookup = postal_lookup
        self._sub_batch_size = sub_batch_size
        self._max_concurrency = max_concurrency
        self._postal_max_concurrency = postal_max_concurrency
        self._apply_name_corrections = apply_name_corrections

    async def enrich(self, rows: list[RawSchoolRecord]) -> EnrichmentResult:
        """Validate, normalize and complete a batch of raw rows.

        Args:
            rows: Raw rows in source order.

        Returns:
            EnrichmentResult with records in source order plus skipped rows.
        """
        valid, skipped = validate_batch(rows)
        result = EnrichmentResult(skipped=skipped)
        if not valid:
            return result

        cache = PostalLookupCache()
        (corrections, failed_sub_batches), postal_failures = await asyncio.gather(
            self._normalize_text(valid),
            self._resolve_postal_codes(valid, cache),
        )
        result.ai_failed_sub_batches = failed_sub_batches
        result.postal_failed_lookups = postal_failures
        result.cache_hits = cache.hits
        result.cache_misses = cache.misses

        for index, raw in enumerate(valid):
            digits = normalize_postal_code(raw.postal_code)
            address = cache.get(digits) if digits else None
            built = self._build_record(raw, corrections.get(index), address)
            if isinstance(built, RowError):
                result.skipped.append(built)
                continue
            if built.enriched_by_ai:
                result.ai_applied += 1
            result.records.append(built)

        logger.debug(
            f"Enriched {len(result.records)} rows ({len(result.skipped)} skipped, "
            f"{result.ai_applied} AI-corrected, postal cache {cache.hits} hits / {cache.misses} misses)"
        )
        return result

    async def _normalize_text(self, rows: list[RawSchoolRecord]) -> tuple[dict[int, SchoolCorrection], int]:
        """Fan sub-batches out to the normalizer; returns corrections by row index."""
        if self._normalizer is None:
            return {}, 0

        normalizer = self._normalizer
        semaphore = asyncio.Semaphore(self._max_concurrency)
        items = [
            SchoolText(
                index=index,
                name=raw.name or "",
                city=raw.city,
                school_type_hint=raw.school_type_hint,
                education_level_hint=raw.education_level_hint,
                email=raw.email,
            )
            for index, raw in enumerate(rows)
        ]
        sub_batches = [items[i : i + self._sub_batch_size] for i in range(0, len(items), self._sub_batch_size)]

        async def _run(sub_batch: list[SchoolText]) -> list[SchoolCorrection] | None:
            async with semaphore:
                try:
                    return await normalizer.normalize(sub_batch)
                except EnrichmentProviderError as e:
                    logger.warning(
                        f"Text normalization unavailable for rows {sub_batch[0].index}-{sub_batch[-1].index}, "
                        f"passing through: {e}"
                    )
                    return None

        outcomes = await asyncio.gather(*(_run(sub_batch) for sub_batch in sub_batches))

        corrections: dict[int, SchoolCorrection] = {}
        failed = 0
        for sub_batch, outcome in zip(sub_batches, outcomes, strict=True):
            if outcome is None:
                failed += 1
                continue
            allowed = {item.index for item in sub_batch}
            for correction in outcome:
                if correction.index in allowed:
                    corrections[correction.index] = correction
        return corrections, failed

    async def _resolve_postal_codes(self, rows: list[RawSchoolRecord], cache: PostalLookupCache) -> int:
        """Look up each distinct postal code once; returns the failed lookup count."""
        if self._postal_lookup is None:
            return 0

        lookup = self._postal_lookup
        to_fetch: list[str] = []
        for raw in rows:
            if not _needs_postal_lookup(raw):
                continue
            digits = normalize_postal_code(raw.postal_code)
            if digits is None:
                continue
            if digits in cache or digits in to_fetch:
                cache.hits += 1
            else:
                cache.misses += 1
                to_fetch.append(digits)

        semaphore = asyncio.Semaphore(self._postal_max_concurrency)

        async def _fetch(digits: str) -> bool:
            async with semaphore:
                try:
                    cache.store(digits, await lookup.lookup(digits))
                except EnrichmentProviderError as e:
                    logger.warning(f"Postal lookup unavailable for {digits}: {e}")
                    return False
                return True

        outcomes = await asyncio.gather(*(_fetch(digits) for digits in to_fetch))
        return sum(1 for ok in outcomes if not ok)

    def _build_record(
        self,
        raw: RawSchoolRecord,
        correction: SchoolCorrection | None,
        address: PostalAddress | None,
    ) -> NormalizedSchoolRecord | RowError:
        source_name = clean_text(raw.name)
        digits = normalize_postal_code(raw.postal_code)
        name = source_name
        school_type = parse_school_type(raw.school_type_hint)
        education_level = parse_education_level(raw.education_level_hint)
        email = normalize_email(raw.email)
        enriched_by_ai = False

        if correction is not None:
            corrected_name = clean_text(correction.name)
            if self._apply_name_corrections and corrected_name and corrected_name != name:
                name = corrected_name
                enriched_by_ai = True
            corrected_type = parse_school_type(correction.school_type)
            if corrected_type is not None and corrected_type != school_type:
                school_type = corrected_type
                enriched_by_ai = True
            corrected_level = parse_education_level(correction.education_level)
            if corrected_level is not None and corrected_level != education_level:
                education_level = corrected_level
                enriched_by_ai = True
            corrected_email = normalize_email(correction.email)
            if corrected_email is not None and corrected_email != email:
                email = corrected_email
                enriched_by_ai = True

        errors = mandatory_field_errors(name, digits)
        if errors or name is None or digits is None:
            return enrichment_skip(raw.line, "; ".join(errors), raw.name)

        city = clean_text(raw.city) or (address.city if address else None)
        state = normalize_state(raw.state) or (normalize_state(address.state) if address else None)

        return NormalizedSchoolRecord(
            line=raw.line,
            name=name,
            slug=generate_slug(name, city, digits),
            postal_code=format_postal_code(digits),
            fingerprint=record_fingerprint(source_name or name, digits, city),
            source_name=source_name,
            address=clean_text(raw.address) or (address.address_line if address else None),
            neighborhood=clean_text(raw.neighborhood) or (address.neighborhood if address else None),
            city=city,
            state=state,
            phone=format_phone(raw.phone),
            email=email,
            school_type=school_type,
            education_level=education_level,
            latitude=address.latitude if address else None,
            longitude=address.longitude if address else None,
            enriched_by_ai=enriched_by_ai,
        )
