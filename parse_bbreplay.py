#!/usr/bin/env python3
"""
Blood Bowl 3 Replay Parser
Parses replay XML (literal or decoded from .bbr) into a turn-by-turn event model.

Usage: python parse_bbreplay.py <replay.bbr|replay.xml>
"""

import binascii
import hashlib
import json
import os
import re
import sys
import xml.etree.ElementTree as ElementTree
from collections import Counter
from typing import Any, Dict, Iterator, List, Optional, Tuple

from replay_decoder import ReplayValidationError, decode_base64_text
from replay_types import (
    EVENT_BALL_STATE,
    EVENT_BLITZ,
    EVENT_BLOCK,
    EVENT_CASUALTY,
    EVENT_DODGE,
    EVENT_REROLL,
    EVENT_TURNOVER,
    ReplayEvent,
    ReplayModel,
    ReplayTeam,
    ReplayTurn,
    UnknownCode,
    to_dict,
)


class ReplayParseError(ReplayValidationError):
    """Replay XML uses a structure the marker scan does not support."""


# The only elements the scan looks at; everything else in the document is skipped
MARKER_TAGS = ('EventExecuteSequence', 'EventEndTurn', 'EventActiveGamerChanged', 'Carrier')
MARKER_OPEN_RE = re.compile(r'<(' + '|'.join(MARKER_TAGS) + r')>')

STEP_MESSAGE_DATA_RE = re.compile(r'<Step><Name>[^<]*</Name><MessageData>([^<]*)</MessageData>')
RESULT_MESSAGE_DATA_RE = re.compile(
    r'<StringMessage><Name>[^<]*</Name><MessageData>([^<]*)</MessageData></StringMessage>'
)
NEW_ACTIVE_GAMER_RE = re.compile(r'<NewActiveGamer>([^<]+)</NewActiveGamer>')
END_TURN_REASON_RE = re.compile(r'<Reason>(-?\d+)</Reason>')
FINISHING_TURN_TYPE_RE = re.compile(r'<FinishingTurnType>(-?\d+)</FinishingTurnType>')

TEAM_STATE_RE = re.compile(r'<TeamState>([\s\S]*?)</TeamState>')
PLAYER_STATE_RE = re.compile(r'<PlayerState>([\s\S]*?)</PlayerState>')
ROOT_TAG_RE = re.compile(r'<(?![?!])([A-Za-z_][\w.:-]*)')

# Nested MessageData is base64 inside base64 in every replay seen so far
MESSAGE_DATA_DECODE_DEPTH = 2

MANUAL_END_TURN_REASON = 1
KNOWN_END_TURN_REASONS = {1, 2, 4}

STEP_TYPE_DODGE = 1
ACTION_CODE_BLITZ = 2

# Result root tag -> semantic event type
RESULT_EVENT_TYPES = {
    'ResultBlockRoll': EVENT_BLOCK,
    'ResultBlockOutcome': EVENT_BLOCK,
    'ResultPushBack': EVENT_BLOCK,
    'QuestionTeamRerollUsage': EVENT_REROLL,
    'ResultTeamRerollUsage': EVENT_REROLL,
    'ResultInjuryRoll': EVENT_CASUALTY,
    'ResultCasualtyRoll': EVENT_CASUALTY,
    'ResultPlayerRemoval': EVENT_CASUALTY,
    'BallStep': EVENT_BALL_STATE,
    'ResultTouchBack': EVENT_BALL_STATE,
}

# Unknown code categories
UNKNOWN_RESULT = 'result'
UNKNOWN_ACTION = 'action'
UNKNOWN_ROLL = 'roll'
UNKNOWN_END_TURN_REASON = 'end_turn_reason'


def build_match_id(text: str) -> str:
    """Stable content hash used as match/report id."""
    return hashlib.sha1(text.encode('utf-8')).hexdigest()[:12]


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_tag_text(body: str, *tags: str) -> Optional[str]:
    """Text of the first <tag>text</tag> found, trying tags in order."""
    for tag in tags:
        match = re.search(rf'<{tag}>([^<]*)</{tag}>', body)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def iter_marker_tokens(xml: str) -> Iterator[Tuple[str, str]]:
    """Yield (tag, body) for each top-level structural marker in document order.

    A marker opening inside another marker's body is not supported and raises
    ReplayParseError. An unterminated marker ends the scan.
    """
    pos = 0
    while True:
        match = MARKER_OPEN_RE.search(xml, pos)
        if not match:
            return
        tag = match.group(1)
        close = f'</{tag}>'
        end = xml.find(close, match.end())
        if end < 0:
            return
        body = xml[match.end():end]
        nested = MARKER_OPEN_RE.search(body)
        if nested:
            raise ReplayParseError(
                f"Replay uses unsupported nested <{nested.group(1)}> inside <{tag}>."
            )
        yield tag, body
        pos = end + len(close)


def decode_message_data(value: str, depth: int = MESSAGE_DATA_DECODE_DEPTH) -> str:
    """Undo the chained base64 encoding of an embedded MessageData fragment."""
    current = value
    for _ in range(depth):
        if current.lstrip().startswith('<'):
            break
        try:
            current = decode_base64_text(current).decode('utf-8')
        except (binascii.Error, ValueError):
            break
    return current.strip()


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _element_value(element: ElementTree.Element) -> Any:
    text = (element.text or '').strip()
    if len(element) == 0 and not element.attrib:
        return text
    value: Dict[str, Any] = dict(element.attrib)
    if text and len(element) == 0:
        value['_text'] = text
    for child in element:
        name = _local_name(child.tag)
        # First occurrence wins for repeated children
        if name not in value:
            value[name] = _element_value(child)
    return value


def parse_fragment(text: str) -> Optional[Tuple[str, Dict[str, Any]]]:
    """Parse an embedded XML fragment into (root_tag, payload)."""
    if not text.startswith('<'):
        return None
    try:
        root = ElementTree.fromstring(text)
    except (ElementTree.ParseError, ValueError):
        return None
    payload = _element_value(root)
    if not isinstance(payload, dict):
        payload = {'_text': payload} if payload else {}
    return _local_name(root.tag), payload


class _TurnState:
    """Mutable turn being assembled by the scan."""

    def __init__(self, turn_number: int, gamer_id: Optional[str] = None,
                 ball_carrier_player_id: Optional[str] = None):
        self.turn_number = turn_number
        self.team_id: Optional[str] = None
        self.gamer_id = gamer_id
        self.ball_carrier_player_id = ball_carrier_player_id
        self.possible_turnover = False
        self.end_turn_reason: Optional[int] = None
        self.finishing_turn_type: Optional[int] = None
        self.events: List[ReplayEvent] = []
        self.carrier_set = False

    def add_sequence_events(self, events: List[ReplayEvent]):
        if not events:
            return
        self.events.extend(events)
        if self.team_id is None:
            self.team_id = next((e.team_id for e in events if e.team_id is not None), None)
        if self.gamer_id is None:
            self.gamer_id = next((e.gamer_id for e in events if e.gamer_id is not None), None)

    def has_content(self) -> bool:
        return bool(self.events) or self.carrier_set

    def finalize(self) -> ReplayTurn:
        action_texts = []
        for event in self.events:
            for value in (event.type, event.source_tag):
                text = value.lower()
                if text not in action_texts:
                    action_texts.append(text)

        return ReplayTurn(
            turn_number=self.turn_number,
            team_id=self.team_id,
            gamer_id=self.gamer_id,
            ball_carrier_player_id=self.ball_carrier_player_id,
            possible_turnover=self.possible_turnover,
            end_turn_reason=self.end_turn_reason,
            finishing_turn_type=self.finishing_turn_type,
            events=tuple(self.events),
            action_texts=tuple(action_texts),
            event_count=len(self.events),
            raw={
                'gamer_id': self.gamer_id,
                'end_turn_reason': self.end_turn_reason,
                'finishing_turn_type': self.finishing_turn_type,
            },
        )


class BBReplayParser:
    def __init__(self, xml: str, match_id: Optional[str] = None):
        self.xml = xml
        self.match_id = match_id or build_match_id(xml)
        self.root_tag = ''
        self.replay_version: Optional[str] = None
        self.teams: List[ReplayTeam] = []
        self.roster: Dict[str, str] = {}
        self.turns: List[ReplayTurn] = []
        self.unknown_codes = Counter()  # (category, code) -> occurrences
        self.found_structured_data = False
        self.model: Optional[ReplayModel] = None

    def parse(self):
        """Parse turns, teams and metadata, then freeze them into self.model."""
        root_match = ROOT_TAG_RE.search(self.xml)
        self.root_tag = root_match.group(1) if root_match else ''
        self.replay_version = _first_tag_text(self.xml, 'ClientVersion')

        self._extract_turns()
        self._extract_teams()

        self.model = ReplayModel(
            match_id=self.match_id,
            root_tag=self.root_tag,
            teams=tuple(self.teams),
            turns=tuple(self.turns),
            unknown_codes=self.get_unknown_codes(),
            roster=dict(self.roster),
            raw={
                'root_tag': self.root_tag,
                'replay_version': self.replay_version,
                'xml_length': len(self.xml),
            },
        )
        return self

    def _extract_turns(self):
        """Walk the structural markers and build finalized turns."""
        turns: List[ReplayTurn] = []
        active_gamer_id: Optional[str] = None
        carrier: Optional[str] = None
        current = _TurnState(1)

        for tag, body in iter_marker_tokens(self.xml):
            self.found_structured_data = True

            if tag == 'EventActiveGamerChanged':
                gamer_match = NEW_ACTIVE_GAMER_RE.search(body)
                if gamer_match and gamer_match.group(1).strip():
                    active_gamer_id = gamer_match.group(1).strip()
                    if current.gamer_id is None:
                        current.gamer_id = active_gamer_id

            elif tag == 'Carrier':
                carrier_id = body.strip()
                if carrier_id in ('', '-1'):
                    carrier = None
                    current.ball_carrier_player_id = None
                else:
                    carrier = carrier_id
                    current.ball_carrier_player_id = carrier_id
                    current.carrier_set = True
                    current.events.append(ReplayEvent(
                        type=EVENT_BALL_STATE,
                        source_tag='Carrier',
                        player_id=carrier_id,
                    ))

            elif tag == 'EventExecuteSequence':
                current.add_sequence_events(self._collect_sequence_events(body))

            elif tag == 'EventEndTurn':
                reason = _to_int(self._match_group(END_TURN_REASON_RE, body))
                finishing_turn_type = _to_int(self._match_group(FINISHING_TURN_TYPE_RE, body))
                current.end_turn_reason = reason
                current.finishing_turn_type = finishing_turn_type

                if reason is not None and reason not in KNOWN_END_TURN_REASONS:
                    self.unknown_codes[(UNKNOWN_END_TURN_REASON, reason)] += 1

                # Anything but a manual end means the turn stopped early
                if reason is not None and reason != MANUAL_END_TURN_REASON:
                    current.possible_turnover = True
                    current.events.append(ReplayEvent(
                        type=EVENT_TURNOVER,
                        source_tag='EventEndTurn',
                        reason_code=reason,
                        finishing_turn_type=finishing_turn_type,
                    ))

                turns.append(current.finalize())
                current = _TurnState(current.turn_number + 1, active_gamer_id, carrier)

        if current.has_content():
            turns.append(current.finalize())

        self.turns = turns if self.found_structured_data else []

    @staticmethod
    def _match_group(pattern, body: str) -> Optional[str]:
        match = pattern.search(body)
        return match.group(1) if match else None

    def _collect_sequence_events(self, block: str) -> List[ReplayEvent]:
        """Decode the step and result payloads of one EventExecuteSequence."""
        events: List[ReplayEvent] = []

        step_root = None
        step_payload: Dict[str, Any] = {}
        step_data = self._match_group(STEP_MESSAGE_DATA_RE, block)
        if step_data:
            parsed = parse_fragment(decode_message_data(step_data))
            if parsed:
                step_root, step_payload = parsed

        context = {
            'step_type': _to_int(step_payload.get('StepType')),
            'player_id': _to_str(step_payload.get('PlayerId')),
            'target_id': _to_str(step_payload.get('TargetId')),
            'team_id': _to_str(step_payload.get('TeamId')),
            'gamer_id': _to_str(step_payload.get('GamerId')),
        }

        if step_root == 'BallStep':
            events.append(ReplayEvent(
                type=EVENT_BALL_STATE,
                source_tag='BallStep',
                payload=step_payload,
                **context,
            ))

        for match in RESULT_MESSAGE_DATA_RE.finditer(block):
            parsed = parse_fragment(decode_message_data(match.group(1)))
            if not parsed:
                continue
            root_tag, payload = parsed
            event_type = self._classify_result(root_tag, payload, context['step_type'])
            if event_type is None:
                continue

            player_id = (
                _to_str(payload.get('PlayerId'))
                or _to_str(payload.get('PushedPlayerId'))
                or context['player_id']
            )
            events.append(ReplayEvent(
                type=event_type,
                source_tag=root_tag,
                player_id=player_id,
                target_id=_to_str(payload.get('TargetId')) or context['target_id'],
                team_id=_to_str(payload.get('TeamId')) or context['team_id'],
                gamer_id=_to_str(payload.get('GamerId')) or context['gamer_id'],
                action_code=_to_int(payload.get('Action')),
                step_type=context['step_type'],
                payload=payload,
            ))

        return events

    def _classify_result(self, root_tag: str, payload: Dict[str, Any],
                         step_type: Optional[int]) -> Optional[str]:
        """Map a result root tag to an event type, tallying anything unmapped."""
        if root_tag in RESULT_EVENT_TYPES:
            return RESULT_EVENT_TYPES[root_tag]

        if root_tag == 'ResultUseAction':
            action_code = _to_int(payload.get('Action'))
            if action_code == ACTION_CODE_BLITZ:
                return EVENT_BLITZ
            self.unknown_codes[(UNKNOWN_ACTION, action_code if action_code is not None else -1)] += 1
            return None

        if root_tag == 'ResultRoll':
            if step_type == STEP_TYPE_DODGE:
                return EVENT_DODGE
            self.unknown_codes[(UNKNOWN_ROLL, step_type if step_type is not None else -1)] += 1
            return None

        self.unknown_codes[(UNKNOWN_RESULT, root_tag)] += 1
        return None

    def _extract_teams(self):
        """Extract teams and the composite player roster."""
        teams: Dict[str, ReplayTeam] = {}
        roster: Dict[str, str] = {}

        for team_match in TEAM_STATE_RE.finditer(self.xml):
            body = team_match.group(1)
            player_start = body.find('<PlayerState>')
            header = body if player_start < 0 else body[:player_start]

            team_id = _first_tag_text(header, 'TeamId', 'Id')
            if team_id is None:
                continue
            if team_id not in teams:
                teams[team_id] = ReplayTeam(
                    id=team_id,
                    name=_first_tag_text(header, 'Name') or f'Team {team_id}',
                    coach=_first_tag_text(header, 'Coach', 'CoachName'),
                    gamer_id=_first_tag_text(header, 'GamerId'),
                )

            for player_match in PLAYER_STATE_RE.finditer(body):
                player_body = player_match.group(1)
                player_id = _first_tag_text(player_body, 'Id', 'PlayerId')
                if player_id is None:
                    continue
                key = f'{team_id}:{player_id}'
                if key not in roster:
                    roster[key] = _first_tag_text(player_body, 'Name') or f'Player {player_id}'

        if not teams:
            # No roster blocks: fall back to ids seen on turns and events
            for turn in self.turns:
                candidates = [turn.team_id] + [e.team_id for e in turn.events]
                for team_id in candidates:
                    if team_id is not None and team_id not in teams:
                        teams[team_id] = ReplayTeam(id=team_id, name=f'Team {team_id}')
                for event in turn.events:
                    if event.team_id is not None and event.player_id is not None:
                        roster.setdefault(f'{event.team_id}:{event.player_id}', f'Player {event.player_id}')

        self.teams = list(teams.values())
        self.roster = roster

    def get_unknown_codes(self) -> Tuple[UnknownCode, ...]:
        """Unknown codes ordered by occurrences, then category and code."""
        ordered = sorted(
            self.unknown_codes.items(),
            key=lambda item: (-item[1], item[0][0], str(item[0][1])),
        )
        return tuple(
            UnknownCode(category=category, code=code, occurrences=count)
            for (category, code), count in ordered
        )

    def report(self):
        """Print a console report of the parsed replay"""
        print("=" * 80)
        print("BLOOD BOWL 3 REPLAY")
        print("=" * 80)
        print(f"\nMatch id: {self.match_id}")
        print(f"Root tag: {self.root_tag or 'Unknown'}")
        print(f"Client version: {self.replay_version or 'Unknown'}")
        print(f"XML size: {len(self.xml):,} characters")

        print(f"\n{'='*40}")
        print("TEAMS")
        print(f"{'='*40}")
        if self.teams:
            for team in self.teams:
                coach = f" (coach: {team.coach})" if team.coach else ""
                print(f"  {team.id:>4}: {team.name}{coach}")
        else:
            print("  (no teams found)")

        print(f"\n{'='*40}")
        print("TURNS")
        print(f"{'='*40}")
        if not self.turns:
            print("  (no structured turns found)")
        for turn in self.turns:
            kinds = Counter(e.type for e in turn.events)
            summary = ', '.join(f"{k}={v}" for k, v in sorted(kinds.items())) or '-'
            flag = ' TURNOVER' if turn.possible_turnover else ''
            carrier = turn.ball_carrier_player_id or '-'
            print(f"  Turn {turn.turn_number:3} team={turn.team_id or '?':>3} carrier={carrier:>4}{flag}  [{summary}]")

        if self.unknown_codes:
            print(f"\n{'='*40}")
            print("UNKNOWN CODES")
            print(f"{'='*40}")
            for code in self.get_unknown_codes()[:15]:
                print(f"  {code.category:16} {str(code.code):30}: {code.occurrences:5}")

    def to_json(self) -> dict:
        """JSON-friendly dict of the parsed model"""
        if self.model is None:
            self.parse()
        data = to_dict(self.model)
        data['turn_count'] = len(self.turns)
        data['event_types'] = dict(Counter(e.type for t in self.turns for e in t.events))
        return data


def parse_replay_xml(xml: str, match_id: Optional[str] = None) -> ReplayModel:
    """Parse canonical replay XML into a ReplayModel."""
    return BBReplayParser(xml, match_id=match_id).parse().model


def extract_structured_turns(xml: str) -> List[ReplayTurn]:
    """Turns found by the marker scan; empty when the document has no markers."""
    return list(parse_replay_xml(xml).turns)


def main():
    import argparse

    from analyze_replay import analyze_replay_xml
    from config import AppConfig
    from replay_decoder import decode_replay_input

    arg_parser = argparse.ArgumentParser(
        description='Parse and coach Blood Bowl 3 replays (.bbr or .xml)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python parse_bbreplay.py match.bbr
  python parse_bbreplay.py match.bbr --json
  python parse_bbreplay.py match.xml --json --output report.json
        """
    )
    arg_parser.add_argument('replay', help='Path to .bbr or .xml replay file')
    arg_parser.add_argument('--json', action='store_true',
                            help='Export the full coaching report to JSON')
    arg_parser.add_argument('--output', '-o',
                            help='Output JSON file path (default: <replay>_report.json)')
    arg_parser.add_argument('--quiet', '-q', action='store_true',
                            help='Suppress console output (only export JSON)')
    arg_parser.add_argument('--max-chars', type=int, default=None,
                            help='Reject replays whose decoded XML is longer than this')

    args = arg_parser.parse_args()

    if not os.path.exists(args.replay):
        print(f"Error: File not found: {args.replay}")
        sys.exit(1)

    config = AppConfig.from_env()
    max_chars = args.max_chars if args.max_chars is not None else config.max_decoded_replay_chars

    with open(args.replay, 'r', encoding='utf-8-sig', errors='replace') as f:
        text = f.read()

    try:
        decoded = decode_replay_input(text, max_decoded_chars=max_chars)
        parser = BBReplayParser(decoded.xml, match_id=build_match_id(text)).parse()
    except ReplayValidationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    report = analyze_replay_xml(decoded.xml, decoded.format, replay=parser.model, config=config)

    if not args.quiet:
        parser.report()

        print(f"\n{'='*40}")
        print("COACHING")
        print(f"{'='*40}")
        print(f"  {report['coaching']['summary']}")
        for team_report in report['team_reports']:
            print(f"\n  Advice for {team_report['team_name']}:")
            print(f"    {team_report['coaching']['summary']}")
            for advice in team_report['coaching']['advice']:
                print(f"    [T{advice['turn_number']:02d}] ({advice['confidence']}) {advice['happened']}")
                print(f"          -> {advice['safer_alternative']}")

    if args.json:
        json_path = args.output or args.replay.rsplit('.', 1)[0] + '_report.json'
        with open(json_path, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, ensure_ascii=False, default=str)
        if not args.quiet:
            print(f"\nExported report to: {json_path}")


if __name__ == '__main__':
    main()
