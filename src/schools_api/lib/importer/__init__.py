"""Importer library public API.

Provides school CSV parsing, header alias resolution, field normalization
and validation.
"""

from schools_api.lib.importer.aliases import FIELD_ALIASES, resolve_columns
from schools_api.lib.importer.parser import (
    SourceBatch,
    SourceLayout,
    count_data_rows,
    inspect_source,
    read_batch,
)
from schools_api.lib.importer.records import (
    EducationLevel,
    NormalizedSchoolRecord,
    RawSchoolRecord,
    SchoolType,
)
from schools_api.lib.importer.validator import validate_batch, validate_record

__all__ = [
    "FIELD_ALIASES",
    "EducationLevel",
    "NormalizedSchoolRecord",
    "RawSchoolRecord",
    "SchoolType",
    "SourceBatch",
    "SourceLayout",
    "count_data_rows",
    "inspect_source",
    "read_batch",
    "resolve_columns",
    "validate_batch",
    "validate_record",
]
