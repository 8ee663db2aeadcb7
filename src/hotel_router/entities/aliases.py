"""Alias lookup used to spot entities mentioned in conversation text."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from hotel_router.entities.dictionary import DictionarySnapshot


class EntityAliasIndex:
    """Substring aliases, each pointing at exactly one entity.

    Aliases are checked longest first so a specific name is never shadowed by
    a shorter, more generic one.
    """

    def __init__(self, aliases: Mapping[str, str]) -> None:
        self._aliases = sorted(
            ((alias.lower(), entity) for alias, entity in aliases.items() if alias.strip()),
            key=lambda item: (-len(item[0]), item[0]),
        )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: DictionarySnapshot,
        *,
        extra_aliases: Mapping[str, str] | None = None,
        ignored_tokens: Iterable[str] = (),
    ) -> "EntityAliasIndex":
        ignored = {token.lower() for token in ignored_tokens}
        aliases: dict[str, str] = {}
        for entry in snapshot.entries:
            aliases[entry.canonical_name] = entry.canonical_name
            for keyword in entry.keywords:
                if keyword in ignored or not snapshot.is_unique_keyword(keyword):
                    continue
                aliases.setdefault(keyword, entry.canonical_name)
        for alias, entity in (extra_aliases or {}).items():
            aliases[alias.lower()] = entity.lower()
        return cls(aliases)

    def detect(self, text: str) -> str | None:
        lowered = text.lower()
        for alias, entity in self._aliases:
            if alias in lowered:
                return entity
        return None

    def aliases(self) -> list[str]:
        return [alias for alias, _ in self._aliases]

    def __len__(self) -> int:
        return len(self._aliases)
