"""Per-invocation postal lookup cache.

One cache lives for one ``EnrichmentStage.enrich`` call: schools cluster
around few postal codes, so a batch repeats lookups, but nothing is shared
across invocations.
"""

from schools_api.lib.enrichment.base import PostalAddress


class PostalLookupCache:
    """Map of 8-digit postal code to a resolved address or a negative entry.

    ``hits`` counts requests answered without an outbound call, ``misses``
    the codes that had to be looked up.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PostalAddress | None] = {}
        self.hits = 0
        self.misses = 0

    def __contains__(self, postal_code: object) -> bool:
        return postal_code in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, postal_code: str) -> PostalAddress | None:
        """Return the cached address; None for negative or absent entries."""
        return self._entries.get(postal_code)

    def store(self, postal_code: str, address: PostalAddress | None) -> None:
        """Record a lookup result; ``None`` stores a negative entry."""
        self._entries[postal_code] = address
