"""
Replay analysis rules for coaching feedback.
These functions operate on parsed (usually team-scoped) replay models and
return findings describing risky turn patterns.
"""

from typing import Any, Callable, Dict, List, Optional

from replay_types import (
    EVENT_BALL_STATE,
    EVENT_BLITZ,
    EVENT_BLOCK,
    EVENT_CASUALTY,
    EVENT_DODGE,
    EVENT_FOUL,
    EVENT_REROLL,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    AnalysisFinding,
    ReplayEvent,
    ReplayModel,
    ReplayTurn,
    TeamContext,
    TimelineTurn,
)

MAX_FINDINGS_PER_CATEGORY = 6
MAX_EVIDENCE_ITEMS = 3

MODE_OFFENSE = 'offense'
MODE_DEFENSE = 'defense'
MODE_MIXED = 'mixed'

# Ball-control rate thresholds for the team context
OFFENSE_CONTROL_RATE = 0.6
DEFENSE_CONTROL_RATE = 0.4

RISKY_ACTIONS = {EVENT_DODGE, EVENT_BLOCK, EVENT_BLITZ}
RISKY_ACTIONS_WITH_FOUL = RISKY_ACTIONS | {EVENT_FOUL}


def finding_id(prefix: str, turn_number: int) -> str:
    return f"{prefix}-turn-{turn_number}"


def context_recommendation(context: TeamContext, offense: str, defense: str, mixed: str) -> str:
    if context.mode == MODE_OFFENSE:
        return offense
    if context.mode == MODE_DEFENSE:
        return defense
    return mixed


def count_events(turn: ReplayTurn, event_type: str) -> int:
    return sum(1 for event in turn.events if event.type == event_type)


def player_name(replay: ReplayModel, team_id: Optional[str], player_id: Optional[str]) -> Optional[str]:
    """Roster name for a player on a team, or None when unknown.

    Without a team, a player id listed by exactly one team still resolves.
    """
    if not player_id:
        return None
    if team_id is not None:
        return replay.roster.get(f"{team_id}:{player_id}") or None
    matches = [name for key, name in replay.roster.items() if key.split(':', 1)[-1] == player_id]
    if len(matches) == 1:
        return matches[0]
    return None


def first_index(turn: ReplayTurn, event_type: str) -> int:
    """Index of the first event of a type, or -1."""
    for index, event in enumerate(turn.events):
        if event.type == event_type:
            return index
    return -1


def first_event(turn: ReplayTurn, event_type: str) -> Optional[ReplayEvent]:
    index = first_index(turn, event_type)
    return turn.events[index] if index >= 0 else None


def event_evidence(event: ReplayEvent) -> Dict[str, Any]:
    return {
        'event_type': event.type,
        'source_tag': event.source_tag,
        'code': event.action_code if event.action_code is not None else event.step_type,
    }


def evidence_from_turn(turn: ReplayTurn, max_items: int = MAX_EVIDENCE_ITEMS) -> List[Dict[str, Any]]:
    return [event_evidence(event) for event in turn.events[:max_items]]


def _finding(prefix: str, category: str, severity: str, turn: ReplayTurn, title: str,
             detail: str, recommendation: str, evidence: List[Dict[str, Any]]) -> AnalysisFinding:
    return AnalysisFinding(
        id=finding_id(prefix, turn.turn_number),
        severity=severity,
        category=category,
        title=title,
        detail=detail,
        recommendation=recommendation,
        turn_number=turn.turn_number,
        evidence=tuple(evidence[:MAX_EVIDENCE_ITEMS]),
    )


def limit_findings(findings: List[AnalysisFinding],
                   max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    """Keep at most max_by_category findings per category, in original order."""
    counts: Dict[str, int] = {}
    limited = []
    for finding in findings:
        count = counts.get(finding.category, 0)
        if count >= max_by_category:
            continue
        counts[finding.category] = count + 1
        limited.append(finding)
    return limited


def evaluate_turnover_cause(replay: ReplayModel, context: TeamContext,
                            max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    findings = []

    for turn in replay.turns:
        if not turn.possible_turnover:
            continue

        cause = (
            first_event(turn, EVENT_DODGE)
            or first_event(turn, EVENT_BLOCK)
            or first_event(turn, EVENT_BALL_STATE)
        )
        if cause is not None:
            detail = f"Your turn stopped after a risky play around {cause.source_tag}."
        else:
            detail = "Your turn stopped before you finished your plan."

        findings.append(_finding(
            'turnover-cause', 'turnover_cause', SEVERITY_HIGH, turn,
            title=f"Turn {turn.turn_number} ended early",
            detail=detail,
            recommendation=context_recommendation(
                context,
                offense="Protect the ball first, then do risky dice actions at the end of your turn.",
                defense="Mark key players first, then take risky dice actions at the end of your turn.",
                mixed="Make safe moves first, then do risky dice actions at the end of your turn.",
            ),
            evidence=[{
                'event_type': cause.type if cause else None,
                'source_tag': cause.source_tag if cause else None,
                'code': str(turn.end_turn_reason) if turn.end_turn_reason is not None else 'unknown',
            }],
        ))

    return limit_findings(findings, max_by_category)


def has_risky_action_before_ball_safety(turn: ReplayTurn) -> bool:
    first_ball = first_index(turn, EVENT_BALL_STATE)
    if first_ball <= 0:
        return False
    return any(event.type in RISKY_ACTIONS for event in turn.events[:first_ball])


def evaluate_action_ordering(replay: ReplayModel, context: TeamContext,
                             max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    findings = []

    for turn in replay.turns:
        if not has_risky_action_before_ball_safety(turn):
            continue

        findings.append(_finding(
            'action-ordering', 'action_ordering', SEVERITY_MEDIUM, turn,
            title=f"Turn {turn.turn_number}: risky moves came too early",
            detail="You took risky actions before securing the ball or key player positions.",
            recommendation=context_recommendation(
                context,
                offense="Start with safe movement and ball protection, then do blocks, blitzes, and dodges.",
                defense="Set your screen and marks first, then do blocks, blitzes, and dodges.",
                mixed="Start with safe movement first, then do risky dice actions.",
            ),
            evidence=evidence_from_turn(turn),
        ))

    return limit_findings(findings, max_by_category)


def evaluate_reroll_timing(replay: ReplayModel, context: TeamContext,
                           max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    findings = []

    for turn in replay.turns:
        first_reroll = first_index(turn, EVENT_REROLL)
        if first_reroll < 0:
            continue

        risky_after = sum(
            1 for event in turn.events[first_reroll + 1:]
            if event.type in RISKY_ACTIONS_WITH_FOUL
        )
        if risky_after < 2 and not turn.possible_turnover:
            continue

        rerolls = [event for event in turn.events if event.type == EVENT_REROLL]
        if risky_after >= 3:
            detail = "You spent a reroll early, then still had several risky dice actions left."
        else:
            detail = "You used a reroll and still had risky actions left in the same turn."

        findings.append(_finding(
            'reroll-timing', 'reroll_timing',
            SEVERITY_HIGH if turn.possible_turnover else SEVERITY_MEDIUM, turn,
            title=f"Turn {turn.turn_number}: reroll used before the hard part",
            detail=detail,
            recommendation=context_recommendation(
                context,
                offense="Save rerolls for key ball actions like pickup, dodge, or score attempts.",
                defense="Save rerolls for your key blitz or a turnover-saving roll.",
                mixed="Do safe actions first so rerolls are saved for your most important roll.",
            ),
            evidence=[event_evidence(e) for e in rerolls[:2]] + [
                {'detail': f"risky_actions_after_reroll:{risky_after}"}
            ],
        ))

    return limit_findings(findings, max_by_category)


def evaluate_ball_safety(replay: ReplayModel, context: TeamContext,
                         max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    findings = []
    previous_carrier = None
    previous_team = None

    for turn in replay.turns:
        carrier = turn.ball_carrier_player_id
        if carrier and previous_carrier and carrier != previous_carrier:
            new_name = player_name(replay, turn.team_id, carrier)
            old_name = player_name(replay, previous_team, previous_carrier)
            if new_name and old_name:
                title = f"Turn {turn.turn_number}: ball moved from {old_name} to {new_name}"
            elif new_name:
                title = f"Turn {turn.turn_number}: ball carrier changed to {new_name}"
            else:
                title = f"Turn {turn.turn_number}: ball carrier changed"
            findings.append(_finding(
                'ball-safety', 'ball_safety', SEVERITY_MEDIUM, turn,
                title=title,
                detail=(
                    f"The ball moved to {new_name}. This can be risky if {new_name} is not well protected."
                    if new_name else
                    "The ball moved to a new player. This can be risky if that player is not well protected."
                ),
                recommendation=context_recommendation(
                    context,
                    offense="Before moving the ball, make sure the new carrier has support nearby.",
                    defense="If you steal the ball, secure it with support before making extra risky plays.",
                    mixed="Before moving the ball, make sure the new carrier has support nearby.",
                ),
                evidence=[{
                    'event_type': EVENT_BALL_STATE,
                    'source_tag': 'Carrier',
                    'detail': f"carrier:{previous_carrier}->{carrier}",
                }],
            ))

        if carrier:
            previous_carrier = carrier
            previous_team = turn.team_id

    return limit_findings(findings, max_by_category)


def evaluate_cage_safety(replay: ReplayModel, context: TeamContext,
                         max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    findings = []

    for turn in replay.turns:
        if not turn.ball_carrier_player_id:
            continue

        support = count_events(turn, EVENT_BLOCK) + count_events(turn, EVENT_BLITZ)
        risky = count_events(turn, EVENT_DODGE) + count_events(turn, EVENT_FOUL)
        if support > 0 or (risky < 2 and not turn.possible_turnover):
            continue

        name = player_name(replay, turn.team_id, turn.ball_carrier_player_id)
        findings.append(_finding(
            'cage-safety', 'cage_safety',
            SEVERITY_HIGH if turn.possible_turnover else SEVERITY_MEDIUM, turn,
            title=(
                f"Turn {turn.turn_number}: {name} looked exposed with the ball" if name
                else f"Turn {turn.turn_number}: ball carrier looked exposed"
            ),
            detail=(
                f"{name} had the ball but you made risky plays without enough protection actions first."
                if name else
                "You had the ball but made risky plays without enough protection actions first."
            ),
            recommendation=context_recommendation(
                context,
                offense="Build a simple cage or screen around the ball before you dodge or foul.",
                defense="If you recover the ball on defense, protect it first before extra risky plays.",
                mixed="Protect the ball first, then take extra risky actions.",
            ),
            evidence=evidence_from_turn(turn, 2) + [
                {'detail': f"support_actions:{support}|risky_actions:{risky}"}
            ],
        ))

    return limit_findings(findings, max_by_category)


def evaluate_screen_lanes(replay: ReplayModel, context: TeamContext,
                          max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    if context.mode == MODE_OFFENSE:
        return []

    findings = []

    for turn in replay.turns:
        contact = count_events(turn, EVENT_BLOCK) + count_events(turn, EVENT_BLITZ)
        dodges = count_events(turn, EVENT_DODGE)
        if contact > 0 or dodges < 2:
            continue

        findings.append(_finding(
            'screen-lanes', 'screen_lanes', SEVERITY_MEDIUM, turn,
            title=f"Turn {turn.turn_number}: defense looked stretched",
            detail="You made several reposition dodges but had no contact actions to slow the drive.",
            recommendation="Set a two-line screen first so the opponent has to dodge before moving forward.",
            evidence=evidence_from_turn(turn, 2) + [
                {'detail': f"dodges:{dodges}|contact_actions:{contact}"}
            ],
        ))

    return limit_findings(findings, max_by_category)


def evaluate_blitz_value(replay: ReplayModel, context: TeamContext,
                         max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    findings = []

    for turn in replay.turns:
        blitzes = count_events(turn, EVENT_BLITZ)
        if blitzes == 0:
            continue

        casualties = count_events(turn, EVENT_CASUALTY)
        blocks = count_events(turn, EVENT_BLOCK)

        # A blitz that hurt someone or opened several blocks paid off
        if not turn.possible_turnover and (casualties > 0 or blocks >= 2):
            continue

        if turn.possible_turnover:
            detail = "The blitz was followed by a failed sequence and your turn ended early."
        else:
            detail = "The blitz did not create clear pressure or player advantage."

        findings.append(_finding(
            'blitz-value', 'blitz_value',
            SEVERITY_HIGH if turn.possible_turnover else SEVERITY_MEDIUM, turn,
            title=f"Turn {turn.turn_number}: blitz gave low value",
            detail=detail,
            recommendation=context_recommendation(
                context,
                offense="Use blitz to open the path for your ball carrier or remove a key marker.",
                defense="Use blitz on the ball side to pressure the carrier or break the cage corner.",
                mixed="Use blitz where it changes the board, not just for a single hit.",
            ),
            evidence=evidence_from_turn(turn, 2) + [
                {'detail': f"blitz:{blitzes}|block:{blocks}|casualty:{casualties}"}
            ],
        ))

    return limit_findings(findings, max_by_category)


def evaluate_foul_timing(replay: ReplayModel, context: TeamContext,
                         max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> List[AnalysisFinding]:
    findings = []

    for turn in replay.turns:
        first_foul = first_index(turn, EVENT_FOUL)
        if first_foul < 0:
            continue

        first_ball = first_index(turn, EVENT_BALL_STATE)
        foul_before_ball_safety = first_ball < 0 or first_foul < first_ball
        if not turn.possible_turnover and not foul_before_ball_safety:
            continue

        if turn.possible_turnover:
            detail = "The foul sequence was part of a turn that ended early."
        else:
            detail = "You fouled before securing the safe parts of your turn."

        findings.append(_finding(
            'foul-timing', 'foul_timing',
            SEVERITY_HIGH if turn.possible_turnover else SEVERITY_MEDIUM, turn,
            title=f"Turn {turn.turn_number}: foul timing was risky",
            detail=detail,
            recommendation=context_recommendation(
                context,
                offense="On offense, foul after the ball is safe and your screen is set.",
                defense="On defense, foul after your key marks and blitz are done.",
                mixed="Treat fouls as late-turn actions unless it directly wins the drive.",
            ),
            evidence=evidence_from_turn(turn, 2) + [
                {'detail': f"foul_before_ball_safety:{str(foul_before_ball_safety).lower()}"}
            ],
        ))

    return limit_findings(findings, max_by_category)


# Evaluation order is also the order findings appear in a report
RULES: List[Callable[..., List[AnalysisFinding]]] = [
    evaluate_turnover_cause,
    evaluate_action_ordering,
    evaluate_reroll_timing,
    evaluate_ball_safety,
    evaluate_cage_safety,
    evaluate_screen_lanes,
    evaluate_blitz_value,
    evaluate_foul_timing,
]


def build_team_context(replay: ReplayModel) -> TeamContext:
    """Classify a turn sequence as offense, defense or mixed by ball control."""
    total = len(replay.turns)
    offense = sum(1 for turn in replay.turns if turn.ball_carrier_player_id)
    defense = total - offense

    if total == 0:
        return TeamContext(mode=MODE_MIXED, offense_turns=0, defense_turns=0, ball_control_rate=0.0)

    rate = offense / total
    if rate >= OFFENSE_CONTROL_RATE:
        mode = MODE_OFFENSE
    elif rate <= DEFENSE_CONTROL_RATE:
        mode = MODE_DEFENSE
    else:
        mode = MODE_MIXED

    return TeamContext(
        mode=mode,
        offense_turns=offense,
        defense_turns=defense,
        ball_control_rate=round(rate, 3),
    )


def build_metrics(replay: ReplayModel, timeline: List[TimelineTurn]) -> Dict[str, Any]:
    keyword_totals: Dict[str, int] = {}
    for entry in timeline:
        for category, hits in entry.keyword_hits.items():
            keyword_totals[category] = keyword_totals.get(category, 0) + hits

    return {
        'total_turns': len(replay.turns),
        'total_events': sum(turn.event_count for turn in replay.turns),
        'turnover_turns': sum(1 for turn in replay.turns if turn.possible_turnover),
        'keyword_hits': keyword_totals,
    }


def analyze_replay_timeline(replay: ReplayModel, timeline: List[TimelineTurn],
                            context: Optional[TeamContext] = None,
                            max_by_category: int = MAX_FINDINGS_PER_CATEGORY) -> Dict[str, Any]:
    """Run every rule over a replay and collect the results.

    Returns dict with:
        - context: TeamContext used for recommendation wording
        - metrics: turn and keyword totals
        - findings: AnalysisFinding list in rule order
        - timeline: the TimelineTurn list analyzed
    """
    context = context or build_team_context(replay)
    findings: List[AnalysisFinding] = []
    for rule in RULES:
        findings.extend(rule(replay, context, max_by_category))

    return {
        'context': context,
        'metrics': build_metrics(replay, timeline),
        'findings': findings,
        'timeline': list(timeline),
    }
