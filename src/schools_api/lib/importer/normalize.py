"""Field normalization for school records.

Pure string helpers: slugs, postal codes (CEP), phones, e-mails, state
codes and classification hints.  Nothing here performs I/O.
"""

import hashlib
import re
import unicodedata

from schools_api.lib.importer.records import EducationLevel, SchoolType

POSTAL_CODE_DIGITS = 8

# Brazilian federative units.
STATE_CODES = frozenset(
    {
        "AC", "AL", "AP", "AM", "BA", "CE", "DF", "ES", "GO", "MA", "MT", "MS", "MG", "PA",
        "PB", "PR", "PE", "PI", "RJ", "RN", "RS", "RO", "RR", "SC", "SP", "SE", "TO",
    }
)  # fmt: skip

_STATE_NAMES: dict[str, str] = {
    "acre": "AC",
    "alagoas": "AL",
    "amapa": "AP",
    "amazonas": "AM",
    "bahia": "BA",
    "ceara": "CE",
    "distrito federal": "DF",
    "espirito santo": "ES",
    "goias": "GO",
    "maranhao": "MA",
    "mato grosso": "MT",
    "mato grosso do sul": "MS",
    "minas gerais": "MG",
    "para": "PA",
    "paraiba": "PB",
    "parana": "PR",
    "pernambuco": "PE",
    "piaui": "PI",
    "rio de janeiro": "RJ",
    "rio grande do norte": "RN",
    "rio grande do sul": "RS",
    "rondonia": "RO",
    "roraima": "RR",
    "santa catarina": "SC",
    "sao paulo": "SP",
    "sergipe": "SE",
    "tocantins": "TO",
}

_SCHOOL_TYPE_HINTS: dict[str, SchoolType] = {
    "public": SchoolType.PUBLIC,
    "publica": SchoolType.PUBLIC,
    "municipal": SchoolType.PUBLIC,
    "estadual": SchoolType.PUBLIC,
    "federal": SchoolType.PUBLIC,
    "private": SchoolType.PRIVATE,
    "privada": SchoolType.PRIVATE,
    "particular": SchoolType.PRIVATE,
}

_EDUCATION_LEVEL_HINTS: dict[str, EducationLevel] = {
    "early_childhood": EducationLevel.EARLY_CHILDHOOD,
    "infantil": EducationLevel.EARLY_CHILDHOOD,
    "educacao infantil": EducationLevel.EARLY_CHILDHOOD,
    "creche": EducationLevel.EARLY_CHILDHOOD,
    "elementary": EducationLevel.ELEMENTARY,
    "fundamental": EducationLevel.ELEMENTARY,
    "ensino fundamental": EducationLevel.ELEMENTARY,
    "high_school": EducationLevel.HIGH_SCHOOL,
    "medio": EducationLevel.HIGH_SCHOOL,
    "ensino medio": EducationLevel.HIGH_SCHOOL,
    "technical": EducationLevel.TECHNICAL,
    "tecnico": EducationLevel.TECHNICAL,
    "profissional": EducationLevel.TECHNICAL,
    "adult": EducationLevel.ADULT,
    "eja": EducationLevel.ADULT,
}

_LEVEL_ORDER = list(EducationLevel)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[a-z]{2,}$")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
_NON_DIGIT_RE = re.compile(r"\D")


def strip_accents(value: str) -> str:
    """Remove combining diacritics (``"São"`` → ``"Sao"``)."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def clean_text(value: str | None) -> str | None:
    """Collapse internal whitespace and strip; empty strings become None."""
    if value is None:
        return None
    cleaned = _WHITESPACE_RE.sub(" ", value).strip()
    return cleaned or None


def slugify(value: str) -> str:
    """Lower-case, accent-free, hyphen-separated slug."""
    return _NON_SLUG_RE.sub("-", strip_accents(value).lower()).strip("-")


def normalize_postal_code(raw: str | None) -> str | None:
    """Return the 8 CEP digits, or None when the value cannot be a CEP.

    Seven-digit values are left-padded with ``0``: spreadsheets routinely
    drop the leading zero of São Paulo codes (``01310-100``).
    """
    if not raw:
        return None
    digits = _NON_DIGIT_RE.sub("", raw)
    if len(digits) == POSTAL_CODE_DIGITS - 1:
        digits = "0" + digits
    if len(digits) != POSTAL_CODE_DIGITS:
        return None
    return digits


def format_postal_code(digits: str) -> str:
    """Format 8 CEP digits as ``XXXXX-XXX``."""
    return f"{digits[:5]}-{digits[5:]}"


def format_phone(raw: str | None) -> str | None:
    """Format Brazilian landline/mobile numbers; other values pass through stripped."""
    if not raw:
        return None
    digits = _NON_DIGIT_RE.sub("", raw)
    if len(digits) in (12, 13) and digits.startswith("55"):
        digits = digits[2:]
    if len(digits) == 10:
        return f"({digits[:2]}) {digits[2:6]}-{digits[6:]}"
    if len(digits) == 11:
        return f"({digits[:2]}) {digits[2:7]}-{digits[7:]}"
    return clean_text(raw)


def normalize_email(raw: str | None) -> str | None:
    """Lower-case an e-mail address; invalid addresses become None."""
    if not raw:
        return None
    email = raw.strip().lower()
    if not _EMAIL_RE.match(email):
        return None
    return email


def normalize_state(raw: str | None) -> str | None:
    """Map a state code or full state name to its two-letter code."""
    if not raw:
        return None
    value = clean_text(strip_accents(raw))
    if value is None:
        return None
    if value.upper() in STATE_CODES:
        return value.upper()
    return _STATE_NAMES.get(value.lower())


def parse_school_type(raw: str | None) -> SchoolType | None:
    """Interpret an ownership hint (``"Municipal"``, ``"privada"``, ``"public"``)."""
    if not raw:
        return None
    key = strip_accents(raw).strip().lower()
    if key in _SCHOOL_TYPE_HINTS:
        return _SCHOOL_TYPE_HINTS[key]
    for hint, school_type in _SCHOOL_TYPE_HINTS.items():
        if hint in key:
            return school_type
    return None


def parse_education_level(raw: str | None) -> EducationLevel | None:
    """Interpret an education-stage hint (``"Ensino Médio"``, ``"elementary"``)."""
    if not raw:
        return None
    key = strip_accents(raw).strip().lower()
    if key in _EDUCATION_LEVEL_HINTS:
        return _EDUCATION_LEVEL_HINTS[key]
    # "Fundamental e Médio" → the highest stage mentioned
    found = [level for hint, level in _EDUCATION_LEVEL_HINTS.items() if len(hint) > 3 and hint in key]
    if not found:
        return None
    return max(found, key=_LEVEL_ORDER.index)


def generate_slug(name: str, city: str | None, postal_digits: str) -> str:
    """Derive the unique-key slug for a school.

    Name plus city when the city is known; otherwise name plus CEP digits so
    same-named schools in unknown cities still land on distinct slugs.
    """
    if city:
        return slugify(f"{name} {city}")
    return f"{slugify(name)}-{postal_digits}"


def disambiguate_slug(slug: str, fingerprint: str, length: int = 6, occurrence: int = 0) -> str:
    """Append a short fingerprint-derived suffix to a colliding slug.

    ``occurrence`` counts earlier rows of the same batch sharing the
    fingerprint; repeats hash it in so identical rows get distinct suffixes.
    """
    if occurrence:
        fingerprint = hashlib.sha1(f"{fingerprint}:{occurrence}".encode()).hexdigest()  # noqa: S324
    return f"{slug}-{fingerprint[:length]}"


def record_fingerprint(name: str, postal_digits: str, city: str | None) -> str:
    """Stable identity of a school across source files.

    Two rows with the same slugified name, CEP and city are the same school
    imported from different lists.
    """
    key = "|".join((slugify(name), postal_digits, slugify(city or "")))
    return hashlib.sha1(key.encode("utf-8")).hexdigest()  # noqa: S324
