"""Abstract enrichment provider interfaces.

Two kinds of collaborator feed the enrichment stage: a text normalizer that
corrects names and classifies schools in sub-batches, and a postal lookup
that resolves a CEP to an address.  Both are optional; a provider error
only ever degrades the rows it was asked about.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class EnrichmentProviderError(Exception):
    """Raised when an enrichment provider experiences a transport or service error.

    Distinguishes provider failures (timeout, HTTP error, unparseable
    output) from a successful response with no answer (which returns None
    or an empty list).

    Args:
        provider_name: Name of the failing provider.
        message: Human-readable error description.
        status_code: Optional HTTP status code from the provider.
    """

    def __init__(self, provider_name: str, message: str, status_code: int | None = None) -> None:
        self.provider_name = provider_name
        self.message = message
        self.status_code = status_code
        super().__init__(f"{provider_name}: {message}")


@dataclass(frozen=True)
class PostalAddress:
    """Address resolved from a postal code."""

    postal_code: str
    address_line: str | None = None
    neighborhood: str | None = None
    city: str | None = None
    state: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class SchoolText:
    """Text fields of one row as sent to the normalizer."""

    index: int
    name: str
    city: str | None = None
    school_type_hint: str | None = None
    education_level_hint: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class SchoolCorrection:
    """Normalizer output for one row; ``None`` fields mean "no change"."""

    index: int
    name: str | None = None
    school_type: str | None = None
    education_level: str | None = None
    email: str | None = None


class TextNormalizer(ABC):
    """Text normalizer interface. All AI providers must implement this."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique name identifying this provider."""

    @abstractmethod
    async def normalize(self, items: list[SchoolText]) -> list[SchoolCorrection]:
        """Suggest corrections for a sub-batch of rows.

        Args:
            items: Rows to normalize, each tagged with its position.

        Returns:
            Corrections keyed by ``index``; rows may be omitted.

        Raises:
            EnrichmentProviderError: On transport, rate-limit or output errors.
        """


class PostalLookup(ABC):
    """Postal code lookup interface."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique name identifying this provider."""

    @abstractmethod
    async def lookup(self, postal_code: str) -> PostalAddress | None:
        """Resolve an 8-digit postal code.

        Args:
            postal_code: Eight CEP digits, no separator.

        Returns:
            PostalAddress or None if the code is unknown to the provider.

        Raises:
            EnrichmentProviderError: On transport or service errors.
        """
