"""Record types flowing through an import batch."""

from dataclasses import dataclass, replace
from enum import StrEnum


class SchoolType(StrEnum):
    """Ownership classification of a school."""

    PUBLIC = "public"
    PRIVATE = "private"


class EducationLevel(StrEnum):
    """Highest education stage a school offers."""

    EARLY_CHILDHOOD = "early_childhood"
    ELEMENTARY = "elementary"
    HIGH_SCHOOL = "high_school"
    TECHNICAL = "technical"
    ADULT = "adult"


@dataclass(frozen=True)
class RawSchoolRecord:
    """One source row, with columns already resolved to canonical fields.

    ``line`` is the 1-based data row number (header excluded).
    """

    line: int
    name: str | None = None
    postal_code: str | None = None
    address: str | None = None
    neighborhood: str | None = None
    city: str | None = None
    state: str | None = None
    phone: str | None = None
    email: str | None = None
    school_type_hint: str | None = None
    education_level_hint: str | None = None


@dataclass(frozen=True)
class NormalizedSchoolRecord:
    """A validated, enriched school ready for the record store."""

    line: int
    name: str
    slug: str
    postal_code: str
    fingerprint: str
    source_name: str | None = None
    address: str | None = None
    neighborhood: str | None = None
    city: str | None = None
    state: str | None = None
    phone: str | None = None
    email: str | None = None
    school_type: SchoolType | None = None
    education_level: EducationLevel | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_active: bool = True
    enriched_by_ai: bool = False

    def with_slug(self, slug: str) -> "NormalizedSchoolRecord":
        """Return a copy carrying a different slug."""
        return replace(self, slug=slug)

    def to_row(self) -> dict[str, object]:
        """Column values for the ``schools`` table."""
        return {
            "name": self.name,
            "slug": self.slug,
            "postal_code": self.postal_code,
            "address": self.address,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "state": self.state,
            "phone": self.phone,
            "email": self.email,
            "school_type": self.school_type.value if self.school_type else None,
            "education_level": self.education_level.value if self.education_level else None,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "is_active": self.is_active,
            "source_name": self.source_name,
            "enriched_by_ai": self.enriched_by_ai,
            "import_fingerprint": self.fingerprint,
        }
