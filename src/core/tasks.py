"""
Chore Ledger — Task catalog.

The fixed table of chores the bot understands. Each task has a canonical
key, the spellings people actually type, and a base point value. Per-house
category weights (see LedgerDB.upsert_category) multiply the base points.
"""

from __future__ import annotations

from dataclasses import dataclass, field

BASE_POINT = 100


@dataclass(frozen=True)
class TaskDefinition:
    """A single catalog entry. The key itself always counts as an alias."""

    key: str
    aliases: tuple[str, ...] = field(default_factory=tuple)
    points: float = BASE_POINT


DEFAULT_TASKS: tuple[TaskDefinition, ...] = (
    TaskDefinition(
        key="皿洗い",
        aliases=("さらあらい", "皿洗い", "洗い物", "洗いもの"),
        points=BASE_POINT * 3,
    ),
    TaskDefinition(
        key="洗濯",
        aliases=("せんたく", "洗濯", "洗濯物", "せんたくもの", "せんたく物"),
        points=BASE_POINT,
    ),
    TaskDefinition(
        key="ゴミ出し",
        aliases=("ごみだし", "ゴミ出し", "ゴミ", "ごみ"),
        points=BASE_POINT * 1.5,
    ),
    TaskDefinition(
        key="買い出し",
        aliases=("買出し", "買い出し", "買い物", "買いもの", "かいもの"),
        points=BASE_POINT * 4,
    ),
    TaskDefinition(
        key="風呂掃除",
        aliases=("ふろそうじ", "風呂掃除", "風呂清掃", "風呂", "ふろ"),
        points=BASE_POINT * 1.5,
    ),
    TaskDefinition(
        key="トイレ掃除",
        aliases=("トイレそうじ", "トイレ掃除", "トイレ清掃", "トイレ", "といれそうじ", "といれ"),
        points=BASE_POINT * 4,
    ),
    TaskDefinition(
        key="床掃除",
        aliases=("ゆかそうじ", "床掃除", "床清掃", "床", "ゆか"),
        points=BASE_POINT * 3,
    ),
    TaskDefinition(
        key="洗面台掃除",
        aliases=("洗面台掃除", "洗面台清掃", "せんめんだい", "せんめんだいそうじ", "洗面台"),
        points=BASE_POINT * 3,
    ),
    TaskDefinition(
        key="風呂排水溝",
        aliases=("風呂の排水溝", "排水溝風呂", "風呂排水溝"),
        points=BASE_POINT * 3,
    ),
)
