"""Field-alias resolution table for school CSV headers.

School spreadsheets arrive with Portuguese and English headers, accents,
and free-form spacing (``"Nome da Escola"``, ``"CEP"``, ``"Município"``).
``resolve_columns`` maps the headers of one file to canonical field names
once; row parsing then only deals with canonical fields.
"""

import re

from loguru import logger

from schools_api.lib.importer.normalize import strip_accents

# canonical field → accepted source headers, in priority order
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("nome", "name", "nome_escola", "nome_da_escola", "escola", "school", "school_name", "instituicao"),
    "postal_code": ("cep", "codigo_postal", "postal_code", "zip", "zipcode", "zip_code"),
    "address": ("endereco", "address", "logradouro", "rua"),
    "neighborhood": ("bairro", "neighborhood", "district"),
    "city": ("cidade", "city", "municipio"),
    "state": ("estado", "state", "uf"),
    "phone": ("telefone", "phone", "fone", "tel", "celular"),
    "email": ("email", "e-mail", "e_mail", "mail"),
    "school_type_hint": (
        "tipo",
        "tipo_escola",
        "school_type",
        "dependencia",
        "dependencia_administrativa",
        "rede",
    ),
    "education_level_hint": ("etapa", "etapas", "nivel", "nivel_ensino", "education_level", "segmento"),
}

REQUIRED_FIELDS = ("name", "postal_code")

# Aliases this short only match exactly; "uf" would otherwise match inside unrelated words.
_MIN_SUBSTRING_ALIAS = 3

_SEPARATOR_RE = re.compile(r"[\s_]+")


def normalize_header(header: str) -> str:
    """Canonical comparison form of a header: accent-free, lower-case, ``_``-joined."""
    return _SEPARATOR_RE.sub("_", strip_accents(header).strip().lower()).strip("_")


_NORMALIZED_ALIASES: dict[str, tuple[str, ...]] = {
    field: tuple(normalize_header(alias) for alias in aliases) for field, aliases in FIELD_ALIASES.items()
}


def resolve_columns(headers: list[str]) -> dict[str, str]:
    """Map canonical field names to the source headers that carry them.

    Exact alias matches win; remaining fields then fall back to the first
    unclaimed header that contains one of their aliases.  Each header feeds
    at most one field.

    Args:
        headers: Header row as read from the file.

    Returns:
        Dict of canonical field → original header string.
    """
    normalized = {header: normalize_header(header) for header in headers}
    resolved: dict[str, str] = {}
    claimed: set[str] = set()

    for field, aliases in _NORMALIZED_ALIASES.items():
        for alias in aliases:
            match = next((h for h, n in normalized.items() if n == alias and h not in claimed), None)
            if match is not None:
                resolved[field] = match
                claimed.add(match)
                break

    for field, aliases in _NORMALIZED_ALIASES.items():
        if field in resolved:
            continue
        for alias in aliases:
            if len(alias) < _MIN_SUBSTRING_ALIAS:
                continue
            match = next((h for h, n in normalized.items() if alias in n and h not in claimed), None)
            if match is not None:
                logger.warning(
                    f"CSV column {match!r} matched field {field!r} by partial alias {alias!r}. "
                    "Add the header to FIELD_ALIASES to make the mapping explicit."
                )
                resolved[field] = match
                claimed.add(match)
                break

    for header in headers:
        if header not in claimed:
            logger.debug(f"Ignoring unknown CSV column: {header!r}")

    return resolved


def missing_required_fields(columns: dict[str, str]) -> list[str]:
    """Return the mandatory canonical fields absent from a resolved mapping."""
    return [field for field in REQUIRED_FIELDS if field not in columns]
