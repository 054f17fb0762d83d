"""
Replay coaching report service.
Decodes replay input, parses it, runs the analysis rules over the whole match
and over each playable team, and assembles a JSON-friendly report.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from coaching import render_coaching
from config import DEFAULT_CONFIG, AppConfig
from parse_bbreplay import build_match_id, parse_replay_xml
from replay_analyzers import analyze_replay_timeline
from replay_decoder import FORMAT_XML, decode_replay_input
from replay_timeline import build_timeline
from replay_types import ReplayModel, to_dict
from team_scoping import TeamAttribution, build_team_scoped_replay, select_playable_teams

logger = logging.getLogger(__name__)


def _analyze(replay: ReplayModel, config: AppConfig) -> Dict[str, Any]:
    timeline = build_timeline(replay)
    analysis = analyze_replay_timeline(
        replay, timeline, max_by_category=config.max_findings_per_category
    )
    coaching = render_coaching(analysis, max_items=config.max_advice_items)
    return {'analysis': analysis, 'coaching': coaching}


def build_team_report(replay: ReplayModel, team_id: str, team_name: str,
                      coach_name: Optional[str] = None,
                      attribution: Optional[TeamAttribution] = None,
                      config: AppConfig = DEFAULT_CONFIG) -> Dict[str, Any]:
    """Analysis and advice for one team's turns only."""
    scoped = build_team_scoped_replay(
        replay, team_id, attribution=attribution, max_turns=config.max_team_turns
    )
    result = _analyze(scoped, config)
    return {
        'team_id': team_id,
        'team_name': team_name,
        'coach_name': coach_name,
        'turn_count': len(scoped.turns),
        'analysis': result['analysis'],
        'coaching': result['coaching'],
    }


def analyze_replay_xml(xml: str, format: str = FORMAT_XML, match_id: Optional[str] = None,
                       replay: Optional[ReplayModel] = None,
                       config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Build the full coaching report for canonical replay XML.

    A replay already parsed from the same XML can be passed to skip parsing.
    """
    config = config or DEFAULT_CONFIG
    if replay is None:
        replay = parse_replay_xml(xml, match_id=match_id or build_match_id(xml))

    whole_match = _analyze(replay, config)

    attribution = TeamAttribution(replay)
    playable = select_playable_teams(replay, attribution)
    team_reports = [
        build_team_report(replay, team.id, team.name, team.coach, attribution, config)
        for team in playable
    ]

    logger.debug(
        "Analyzed replay %s: %d turns, %d findings, %d team reports",
        replay.match_id, len(replay.turns),
        len(whole_match['analysis']['findings']), len(team_reports),
    )

    return to_dict({
        'id': replay.match_id,
        'generated_at': datetime.now(timezone.utc).isoformat(),
        'replay': {
            'match_id': replay.match_id,
            'replay_version': replay.replay_version,
            'format': format,
            'team_count': len(playable),
            'turn_count': len(replay.turns),
            'teams': [
                {'id': team.id, 'name': team.name, 'coach': team.coach}
                for team in replay.teams
            ],
            'unknown_codes': list(replay.unknown_codes),
        },
        'analysis': whole_match['analysis'],
        'coaching': whole_match['coaching'],
        'team_reports': team_reports,
    })


def analyze_replay_input(text: str, max_decoded_chars: Optional[int] = None,
                         config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Decode raw replay text (XML or base64 .bbr) and build its report.

    Raises:
        ReplayValidationError: If the input is empty, undecodable or too large.
    """
    config = config or DEFAULT_CONFIG
    if max_decoded_chars is None:
        max_decoded_chars = config.max_decoded_replay_chars

    decoded = decode_replay_input(text, max_decoded_chars=max_decoded_chars)
    return analyze_replay_xml(
        decoded.xml, decoded.format, match_id=build_match_id(text), config=config
    )
