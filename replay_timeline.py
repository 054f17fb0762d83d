"""
Per-turn event summary used to cross-check the code mapping.
Keyword matching over each turn's raw snapshot and action texts catches
events the result-tag table does not map yet.
"""

import json
import re
from typing import Dict, List

from replay_types import (
    EVENT_BLITZ,
    EVENT_BLOCK,
    EVENT_DODGE,
    EVENT_REROLL,
    EVENT_TURNOVER,
    ReplayModel,
    ReplayTurn,
    TimelineTurn,
)

KEYWORD_PATTERNS = {
    EVENT_TURNOVER: re.compile(r'\bturn ?over\b'),
    EVENT_REROLL: re.compile(r'\bre ?-?roll\b|\breroll\b'),
    EVENT_BLITZ: re.compile(r'\bblitz(?:ed|ing|es)?\b'),
    EVENT_DODGE: re.compile(r'\bdodge(?:d|s|ing)?\b'),
    EVENT_BLOCK: re.compile(r'\bblock(?:ed|ing|s)?\b'),
}

TRACKED_CATEGORIES = tuple(KEYWORD_PATTERNS)


def turn_search_text(turn: ReplayTurn) -> str:
    raw = json.dumps(turn.raw, sort_keys=True, default=str).lower()
    return f"{raw} {' '.join(turn.action_texts)}"


def keyword_hits(turn: ReplayTurn) -> Dict[str, int]:
    """Max of typed event count and keyword matches, per tracked category."""
    text = turn_search_text(turn)
    hits = {}
    for category, pattern in KEYWORD_PATTERNS.items():
        typed = sum(1 for event in turn.events if event.type == category)
        hits[category] = max(typed, len(pattern.findall(text)))
    return hits


def build_timeline(replay: ReplayModel) -> List[TimelineTurn]:
    return [
        TimelineTurn(
            turn_number=turn.turn_number,
            team_id=turn.team_id,
            raw_event_count=max(turn.event_count, 1),
            keyword_hits=keyword_hits(turn),
        )
        for turn in replay.turns
    ]
