"""
Chore Ledger — Name normalizer.

Every task alias, catalog key, stored category name and user input goes
through normalize() before it is compared or stored, so the alias index and
the ledger never disagree about what a name looks like.
"""

from __future__ import annotations

import unicodedata


def normalize(text: str) -> str:
    """Trim, collapse whitespace runs to one ASCII space, then apply NFKC.

    str.split() with no separator treats every Unicode whitespace character
    (including the full-width space U+3000) as a separator, so a blank
    input comes back as "".

    Examples:
        "  皿洗い  "      -> "皿洗い"
        "皿洗い　掃除" -> "皿洗い 掃除"
        "ｻﾗｱﾗｲ"          -> "サラアライ"
    """
    collapsed = " ".join(text.split())
    return unicodedata.normalize("NFKC", collapsed)
