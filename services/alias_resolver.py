"""
Alias Resolver
Maps cleaned customer names to configured canonical display names.
"""
import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


def alias_key(name: str) -> str:
    """Lookup key for a raw customer string: trimmed and uppercased."""
    return " ".join(str(name).split()).upper()


class AliasResolver:
    """
    Case-insensitive exact-match lookup.

    Built from an explicit mapping so every upload resolves against a known
    alias set; resolve() returns the input unchanged on a miss.
    """

    def __init__(self, mapping: Optional[Mapping[str, str]] = None):
        self._aliases: Dict[str, str] = {}
        for raw, canonical in (mapping or {}).items():
            self.add(raw, canonical)

    @classmethod
    def merged(cls, *mappings: Optional[Mapping[str, str]]) -> "AliasResolver":
        """Later mappings override earlier ones for the same key."""
        resolver = cls()
        for mapping in mappings:
            for raw, canonical in (mapping or {}).items():
                resolver.add(raw, canonical)
        return resolver

    def add(self, raw: str, canonical: str) -> None:
        if not raw or not canonical or not str(canonical).strip():
            return
        self._aliases[alias_key(raw)] = str(canonical).strip()

    def resolve(self, name: str) -> str:
        if not name:
            return name
        return self._aliases.get(alias_key(name), name)

    def items(self) -> Iterable[Tuple[str, str]]:
        return self._aliases.items()

    def __len__(self) -> int:
        return len(self._aliases)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and alias_key(name) in self._aliases
