"""
Helpers for resolving client model names to backend model ids.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .claude import DEFAULT_MODEL_ALIASES


class ModelAliasTable:
    """
    Immutable alias -> canonical model id mapping.

    Lookup order: exact match, then case-insensitive substring match (longest
    pattern first), else the input is returned unchanged. Every canonical id
    is also a key mapping to itself, so ``resolve`` is idempotent.
    """

    def __init__(self, aliases: Mapping[str, str]) -> None:
        table: Dict[str, str] = dict(aliases)
        for canonical in set(table.values()):
            table[canonical] = canonical
        self._aliases = MappingProxyType(table)
        self._patterns: Tuple[Tuple[str, str], ...] = tuple(
            sorted(
                ((alias.lower(), target) for alias, target in table.items()),
                key=lambda item: (-len(item[0]), item[0]),
            )
        )

    @classmethod
    def default(cls) -> "ModelAliasTable":
        return cls(DEFAULT_MODEL_ALIASES)

    @property
    def aliases(self) -> Mapping[str, str]:
        return self._aliases

    def resolve(self, model: str) -> str:
        """Map a client model name to the backend model id."""
        mapped = self._aliases.get(model)
        if mapped is not None:
            return mapped

        lowered = model.lower()
        for pattern, target in self._patterns:
            if pattern in lowered:
                return target
        return model

    def with_overrides(self, overrides: Optional[Mapping[str, str]]) -> "ModelAliasTable":
        """Return a new table with ``overrides`` layered on top of this one."""
        if not overrides:
            return self
        merged = dict(self._aliases)
        merged.update(overrides)
        return ModelAliasTable(merged)

    def supported_models(self) -> List[str]:
        return sorted(self._aliases)

    def __contains__(self, model: object) -> bool:
        return model in self._aliases

    def __len__(self) -> int:
        return len(self._aliases)
