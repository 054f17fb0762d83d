"""
Player-facing coaching text built from analysis findings.
"""

from typing import Any, Dict, List

from replay_types import (
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    AnalysisFinding,
    TurnAdvice,
)

MAX_ADVICE_ITEMS = 16

SEVERITY_RANK = {SEVERITY_HIGH: 3, SEVERITY_MEDIUM: 2, SEVERITY_LOW: 1}


def confidence_from_severity(severity: str) -> str:
    if severity == SEVERITY_HIGH:
        return 'high'
    if severity == SEVERITY_MEDIUM:
        return 'medium'
    return 'low'


def to_turn_advice(finding: AnalysisFinding) -> TurnAdvice:
    return TurnAdvice(
        turn_number=finding.turn_number or 0,
        happened=finding.title,
        risky_because=finding.detail,
        safer_alternative=finding.recommendation,
        confidence=confidence_from_severity(finding.severity),
        evidence=finding.evidence,
    )


def findings_to_turn_advice(findings: List[AnalysisFinding],
                            max_items: int = MAX_ADVICE_ITEMS) -> List[TurnAdvice]:
    """Turn-anchored findings as advice, in turn order.

    Findings on the same turn stay ordered by severity, highest first.
    """
    ranked = sorted(
        (f for f in findings if f.turn_number is not None),
        key=lambda f: (-SEVERITY_RANK.get(f.severity, 0), f.turn_number),
    )
    advice = [to_turn_advice(f) for f in ranked]
    advice.sort(key=lambda a: a.turn_number)
    return advice[:max_items]


def summarize_match(analysis: Dict[str, Any]) -> str:
    context = analysis['context']
    findings = analysis['findings']
    total_turns = analysis['metrics']['total_turns']

    if total_turns == 0:
        return "We could not read turns from this replay. Try another file."

    top = next((f for f in findings if f.severity == SEVERITY_HIGH), None)
    if top is not None:
        return f"{top.title}. {top.detail} This replay looked mostly like {context.mode} play."

    return (
        f"Checked {total_turns} turns and found {len(findings)} coaching tips. "
        f"This replay looked mostly like {context.mode} play."
    )


def render_coaching(analysis: Dict[str, Any], max_items: int = MAX_ADVICE_ITEMS) -> Dict[str, Any]:
    return {
        'summary': summarize_match(analysis),
        'advice': findings_to_turn_advice(analysis['findings'], max_items),
    }
