"""
Domain index for network filters.

Partitions compiled network filters into a hostname hash map for
``||domain.com^`` rules (O(1) lookup per host suffix) and a generic bucket
scanned for every request. An index is built from one immutable tuple of
filters and is never patched; a new rule set gets a new index.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from .rules import NetworkFilter

logger = logging.getLogger(__name__)


def get_hostname_variants(hostname: str) -> list[str]:
    """Get all variants of a hostname for matching.

    For 'sub.example.com', returns ['sub.example.com', 'example.com', 'com'].
    """
    parts = hostname.split(".")
    variants = []
    for i in range(len(parts)):
        variants.append(".".join(parts[i:]))
    return variants


@dataclass(frozen=True)
class DomainIndex:
    """Hostname -> filter positions, plus the positions of generic filters."""

    domain_map: dict[str, tuple[int, ...]]
    generic: tuple[int, ...]

    @classmethod
    def build(cls, filters: Sequence[NetworkFilter]) -> DomainIndex:
        """Build the index from scratch in one pass over ``filters``."""
        domain_map: dict[str, list[int]] = {}
        generic: list[int] = []

        for i, f in enumerate(filters):
            if f.is_domain_indexable and f.domain_literal:
                domain_map.setdefault(f.domain_literal, []).append(i)
            else:
                generic.append(i)

        logger.debug(
            "Indexed %d network filters (%d domains, %d generic)",
            len(filters),
            len(domain_map),
            len(generic),
        )

        return cls(
            domain_map={domain: tuple(ids) for domain, ids in domain_map.items()},
            generic=tuple(generic),
        )

    def candidates(self, hostname: str) -> Iterator[int]:
        """Yield candidate filter positions for a host.

        Domain buckets for every suffix of the host come first, then the
        generic bucket. Each position is yielded at most once.
        """
        if hostname:
            for variant in get_hostname_variants(hostname):
                yield from self.domain_map.get(variant, ())
        yield from self.generic

    @property
    def indexed_count(self) -> int:
        return sum(len(ids) for ids in self.domain_map.values())
