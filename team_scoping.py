"""
Team attribution for parsed replays.
Resolves which team a turn, event or ball carrier belongs to when ownership
tags are missing, and builds per-team scoped copies of a replay.
"""

import re
from collections import Counter, defaultdict
from dataclasses import replace
from typing import Dict, List, Optional, Set

from replay_types import (
    EVENT_BLITZ,
    EVENT_BLOCK,
    EVENT_DODGE,
    EVENT_FOUL,
    EVENT_REROLL,
    ReplayEvent,
    ReplayModel,
    ReplayTeam,
    ReplayTurn,
)

MAX_TEAM_TURNS = 16

# Attribution weights
HIGH_COMMITMENT_EVENTS = {EVENT_DODGE, EVENT_BLITZ, EVENT_FOUL, EVENT_REROLL}
HIGH_COMMITMENT_WEIGHT = 4
BLOCK_WEIGHT = 2
OWNED_EVENT_WEIGHT = 1
BALL_CARRIER_BONUS = 2
TEAM_HINT_BONUS = 1

GENERIC_TEAM_NAME_RE = re.compile(r'^Team \d+$', re.IGNORECASE)


def is_generic_team_name(name: str) -> bool:
    return bool(GENERIC_TEAM_NAME_RE.match((name or '').strip()))


def build_player_team_lookup(roster: Dict[str, str]) -> Dict[str, str]:
    """Map player id -> team id from a 'team:player' keyed roster.

    Player ids listed under more than one team are left out entirely.
    """
    teams_by_player: Dict[str, Set[str]] = defaultdict(set)
    for key in roster:
        team_id, sep, player_id = key.partition(':')
        if not sep or not team_id or not player_id:
            continue
        teams_by_player[player_id].add(team_id)

    return {
        player_id: next(iter(team_ids))
        for player_id, team_ids in teams_by_player.items()
        if len(team_ids) == 1
    }


class TeamAttribution:
    """Resolves team ownership for turns, events and ball carriers."""

    def __init__(self, replay: ReplayModel):
        self.replay = replay
        self.team_ids = list(replay.team_ids())
        self.player_teams = build_player_team_lookup(replay.roster)
        self.gamer_teams = {
            team.gamer_id: team.id for team in replay.teams if team.gamer_id is not None
        }

    def team_for_player(self, player_id: Optional[str]) -> Optional[str]:
        if player_id is None:
            return None
        return self.player_teams.get(player_id)

    def team_for_event(self, event: ReplayEvent) -> Optional[str]:
        """Owner of an event: its player's team, else its own team tag."""
        team_id = self.team_for_player(event.player_id)
        if team_id is not None:
            return team_id
        return event.team_id

    def score_turn(self, turn: ReplayTurn) -> Dict[str, int]:
        """Ownership score per known team for one turn."""
        scores = {team_id: 0 for team_id in self.team_ids}

        for event in turn.events:
            owner = self.team_for_event(event)
            if owner not in scores:
                continue
            if event.type in HIGH_COMMITMENT_EVENTS:
                scores[owner] += HIGH_COMMITMENT_WEIGHT
            elif event.type == EVENT_BLOCK:
                scores[owner] += BLOCK_WEIGHT
            else:
                scores[owner] += OWNED_EVENT_WEIGHT

        carrier_team = self.team_for_player(turn.ball_carrier_player_id)
        if carrier_team in scores:
            scores[carrier_team] += BALL_CARRIER_BONUS

        hint_team = self.gamer_teams.get(turn.gamer_id) if turn.gamer_id is not None else None
        if hint_team in scores:
            scores[hint_team] += TEAM_HINT_BONUS

        return scores

    def resolve_turn_team(self, turn: ReplayTurn) -> Optional[str]:
        """Team a turn belongs to, or None when the evidence is tied."""
        if turn.team_id is not None and turn.team_id in self.team_ids:
            return turn.team_id

        scores = self.score_turn(turn)
        if not scores:
            return None
        best = max(scores.values())
        if best <= 0:
            return None
        leaders = [team_id for team_id, score in scores.items() if score == best]
        if len(leaders) != 1:
            return None
        return leaders[0]

    def turn_usage(self) -> Counter:
        """Number of turns attributed to each team."""
        usage = Counter()
        for turn in self.replay.turns:
            team_id = self.resolve_turn_team(turn)
            if team_id is not None:
                usage[team_id] += 1
        return usage


def select_playable_teams(replay: ReplayModel,
                          attribution: Optional[TeamAttribution] = None) -> List[ReplayTeam]:
    """Pick the two teams worth reporting on."""
    attribution = attribution or TeamAttribution(replay)
    usage = attribution.turn_usage()

    # sorted() is stable, so equal usage keeps document order
    by_usage = [
        team for team in sorted(replay.teams, key=lambda t: -usage.get(t.id, 0))
        if usage.get(team.id, 0) > 0
    ]
    if len(by_usage) >= 2:
        return by_usage[:2]

    named = [team for team in replay.teams if not is_generic_team_name(team.name)]
    if len(named) >= 2:
        return named[:2]

    selected = list(by_usage)
    for team in replay.teams:
        if len(selected) >= 2:
            break
        if team not in selected:
            selected.append(team)
    return selected


def _scoped_turn(turn: ReplayTurn, turn_number: int, team_id: str,
                 attribution: TeamAttribution) -> ReplayTurn:
    events = tuple(
        replace(event, payload=dict(event.payload) if event.payload is not None else None)
        for event in turn.events
        if attribution.team_for_event(event) in (team_id, None)
    )

    carrier = turn.ball_carrier_player_id
    carrier_team = attribution.team_for_player(carrier)
    if carrier_team is not None and carrier_team != team_id:
        carrier = None

    action_texts = []
    for event in events:
        for value in (event.type, event.source_tag):
            text = value.lower()
            if text not in action_texts:
                action_texts.append(text)

    return replace(
        turn,
        turn_number=turn_number,
        ball_carrier_player_id=carrier,
        events=events,
        action_texts=tuple(action_texts),
        event_count=len(events),
        raw={
            **turn.raw,
            'coach_turn_number': turn_number,
            'original_turn_number': turn.turn_number,
        },
    )


def select_team_turns(replay: ReplayModel, team_id: str,
                      attribution: Optional[TeamAttribution] = None,
                      max_turns: int = MAX_TEAM_TURNS) -> List[ReplayTurn]:
    """Turns played by one team, in match order, before renumbering."""
    attribution = attribution or TeamAttribution(replay)

    turns = [turn for turn in replay.turns if turn.team_id == team_id]
    if len(turns) < max_turns:
        inferred = [turn for turn in replay.turns if attribution.resolve_turn_team(turn) == team_id]
        if len(inferred) > len(turns):
            turns = inferred

    if not turns and len(replay.teams) == 2:
        team_index = next((i for i, team in enumerate(replay.teams) if team.id == team_id), None)
        if team_index is not None:
            turns = [turn for index, turn in enumerate(replay.turns) if index % 2 == team_index]

    return turns[:max_turns]


def build_team_scoped_replay(replay: ReplayModel, team_id: str,
                             attribution: Optional[TeamAttribution] = None,
                             max_turns: int = MAX_TEAM_TURNS) -> ReplayModel:
    """Independent copy of the replay restricted to one team's turns and events."""
    attribution = attribution or TeamAttribution(replay)
    turns = select_team_turns(replay, team_id, attribution, max_turns)
    scoped_turns = tuple(
        _scoped_turn(turn, index + 1, team_id, attribution)
        for index, turn in enumerate(turns)
    )
    return replace(
        replay,
        turns=scoped_turns,
        roster=dict(replay.roster),
        raw={**replay.raw, 'scoped_team_id': team_id},
    )
