from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    name: str
    price_cents: int


class Catalog:
    """Read-only package catalog. Built once and shared by every request."""

    def __init__(self, entries: Iterable[CatalogEntry]) -> None:
        self._entries: Mapping[str, CatalogEntry] = MappingProxyType(
            {e.id: e for e in entries}
        )

    def lookup(self, package_id: str) -> Optional[CatalogEntry]:
        if not isinstance(package_id, str):
            return None
        return self._entries.get(package_id)

    def __contains__(self, package_id: object) -> bool:
        return package_id in self._entries

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


# prices in cents (EUR)
PACKAGE_CATALOG = Catalog([
    CatalogEntry("fresh", "Cerstve pecivo", 1000),
    CatalogEntry("fruit", "Ovocny box", 1000),
    CatalogEntry("pastry", "Cukrarsky vyber", 1000),
    CatalogEntry("surprise", "Surprise box", 800),
])
