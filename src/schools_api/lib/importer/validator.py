"""School record validation rules.

A school needs a name and a postal code (CEP) that can be normalized to
eight digits.  Everything else is optional and filled in by enrichment.
"""

from loguru import logger

from schools_api.lib.importer.normalize import clean_text, normalize_postal_code
from schools_api.lib.importer.records import RawSchoolRecord
from schools_api.lib.jobs.errors import RowError, enrichment_skip


def mandatory_field_errors(name: str | None, postal_code: str | None) -> list[str]:
    """Return the reasons a name/postal-code pair cannot identify a school."""
    errors: list[str] = []
    if clean_text(name) is None:
        errors.append("Missing required field: name")
    if not postal_code:
        errors.append("Missing required field: postal_code")
    elif normalize_postal_code(postal_code) is None:
        errors.append(f"Invalid postal_code: {postal_code!r} (expected 8 digits)")
    return errors


def validate_record(record: RawSchoolRecord) -> tuple[bool, list[str]]:
    """Validate a single raw school row.

    Args:
        record: Row with canonical fields.

    Returns:
        Tuple of (is_valid, list of error messages).
    """
    errors = mandatory_field_errors(record.name, record.postal_code)
    return len(errors) == 0, errors


def validate_batch(records: list[RawSchoolRecord]) -> tuple[list[RawSchoolRecord], list[RowError]]:
    """Split a batch into rows worth enriching and rows skipped outright.

    Args:
        records: Raw rows of one batch.

    Returns:
        Tuple of (valid rows, row errors for the skipped rows).
    """
    valid: list[RawSchoolRecord] = []
    skipped: list[RowError] = []

    for record in records:
        is_valid, errors = validate_record(record)
        if is_valid:
            valid.append(record)
        else:
            skipped.append(enrichment_skip(record.line, "; ".join(errors), record.name))

    if skipped:
        logger.debug(f"{len(skipped)} of {len(records)} rows lack mandatory fields")
    return valid, skipped
