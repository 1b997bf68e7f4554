"""
Chore Ledger — Task resolver.

Maps free text ("洗い物", "皿洗", "ｻﾗｱﾗｲ") to a catalog task:

1. exact lookup on the normalized alias table,
2. otherwise a Levenshtein scan over every alias, keeping distance <= 1,
3. one distinct task wins; several distinct tasks are reported back as
   ambiguous so the user can pick.

An AliasIndex is immutable once built. Reloading the catalog means building
a new index and swapping the reference, so concurrent resolutions never see
a half-built table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Iterable, Mapping, Union

from src.core.normalizer import normalize
from src.core.tasks import DEFAULT_TASKS, TaskDefinition

logger = logging.getLogger(__name__)

MAX_TYPO_DISTANCE = 1


# ---------------------------------------------------------------------------
# Resolution results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskResolved:
    definition: TaskDefinition


@dataclass(frozen=True)
class TaskNotFound:
    input: str


@dataclass(frozen=True)
class TaskAmbiguous:
    input: str
    candidates: tuple[str, ...] = field(default_factory=tuple)


ResolveResult = Union[TaskResolved, TaskNotFound, TaskAmbiguous]


# ---------------------------------------------------------------------------
# Edit distance
# ---------------------------------------------------------------------------


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost insert/delete/substitute distance, counted in code points."""
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current[j] = min(
                current[j - 1] + 1,
                previous[j] + 1,
                previous[j - 1] + cost,
            )
        previous = current
    return previous[len(b)]


# ---------------------------------------------------------------------------
# Alias index
# ---------------------------------------------------------------------------


class AliasIndex:
    """Read-only lookup tables built from a task catalog."""

    __slots__ = ("_exact", "_fuzzy", "_definitions")

    def __init__(
        self,
        exact: Mapping[str, str],
        fuzzy: Mapping[str, str],
        definitions: Mapping[str, TaskDefinition],
    ) -> None:
        self._exact = MappingProxyType(dict(exact))
        self._fuzzy = MappingProxyType(dict(fuzzy))
        self._definitions = MappingProxyType(dict(definitions))

    @classmethod
    def build(cls, definitions: Iterable[TaskDefinition]) -> AliasIndex:
        """Normalize every key and alias and map each to its canonical key."""
        exact: dict[str, str] = {}
        defs: dict[str, TaskDefinition] = {}

        for definition in definitions:
            canonical = normalize(definition.key)
            # Resolved definitions carry the normalized key that events are stored under.
            defs[canonical] = replace(definition, key=canonical)
            for alias in (definition.key, *definition.aliases):
                normalized = normalize(alias)
                if not normalized:
                    continue
                previous = exact.get(normalized)
                if previous is not None and previous != canonical:
                    logger.warning(
                        "Alias '%s' claimed by both '%s' and '%s'; keeping '%s'",
                        normalized, previous, canonical, canonical,
                    )
                exact[normalized] = canonical

        # The fuzzy corpus is the exact alias set; distance search runs over it.
        fuzzy = dict(exact)

        logger.debug("Alias index built: %d tasks, %d aliases", len(defs), len(exact))
        return cls(exact, fuzzy, defs)

    @property
    def exact(self) -> Mapping[str, str]:
        return self._exact

    @property
    def fuzzy(self) -> Mapping[str, str]:
        return self._fuzzy

    @property
    def definitions(self) -> Mapping[str, TaskDefinition]:
        return self._definitions

    def resolve(self, text: str) -> ResolveResult:
        """Resolve free text to a task definition.

        Exact alias matches always win, even when another task has an alias
        one edit away. Ambiguous candidates come back sorted.
        """
        normalized = normalize(text)
        if not normalized:
            return TaskNotFound(input=text)

        canonical = self._exact.get(normalized)
        if canonical is not None:
            return TaskResolved(definition=self._definitions[canonical])

        candidates = {
            key
            for alias, key in self._fuzzy.items()
            if levenshtein_distance(alias, normalized) <= MAX_TYPO_DISTANCE
        }

        if not candidates:
            return TaskNotFound(input=text)
        if len(candidates) == 1:
            (only,) = candidates
            return TaskResolved(definition=self._definitions[only])
        return TaskAmbiguous(input=text, candidates=tuple(sorted(candidates)))


def default_index() -> AliasIndex:
    """Build an index over the built-in catalog."""
    return AliasIndex.build(DEFAULT_TASKS)
