"""
Data model for parsed Blood Bowl 3 replays.
All types are frozen; the parser builds turns through its own mutable state
and only hands out these values once a turn is finished.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional, Tuple, Union

# Semantic event types
EVENT_BLOCK = 'block'
EVENT_BLITZ = 'blitz'
EVENT_DODGE = 'dodge'
EVENT_REROLL = 'reroll'
EVENT_CASUALTY = 'casualty'
EVENT_BALL_STATE = 'ball_state'
EVENT_TURNOVER = 'turnover'
# Reserved: understood by the rules, not emitted by the mapping table yet
EVENT_FOUL = 'foul'

EVENT_TYPES = (
    EVENT_BLOCK,
    EVENT_BLITZ,
    EVENT_DODGE,
    EVENT_REROLL,
    EVENT_CASUALTY,
    EVENT_BALL_STATE,
    EVENT_TURNOVER,
    EVENT_FOUL,
)

SEVERITY_HIGH = 'high'
SEVERITY_MEDIUM = 'medium'
SEVERITY_LOW = 'low'


@dataclass(frozen=True)
class ReplayTeam:
    id: str
    name: str
    coach: Optional[str] = None
    gamer_id: Optional[str] = None


@dataclass(frozen=True)
class ReplayEvent:
    type: str
    source_tag: str
    player_id: Optional[str] = None
    target_id: Optional[str] = None
    team_id: Optional[str] = None
    gamer_id: Optional[str] = None
    action_code: Optional[int] = None
    step_type: Optional[int] = None
    reason_code: Optional[int] = None
    finishing_turn_type: Optional[int] = None
    payload: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ReplayTurn:
    turn_number: int
    team_id: Optional[str] = None
    gamer_id: Optional[str] = None
    ball_carrier_player_id: Optional[str] = None
    possible_turnover: bool = False
    end_turn_reason: Optional[int] = None
    finishing_turn_type: Optional[int] = None
    events: Tuple[ReplayEvent, ...] = ()
    action_texts: Tuple[str, ...] = ()
    event_count: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UnknownCode:
    category: str
    code: Union[int, str]
    occurrences: int


@dataclass(frozen=True)
class ReplayModel:
    match_id: str
    root_tag: str
    teams: Tuple[ReplayTeam, ...] = ()
    turns: Tuple[ReplayTurn, ...] = ()
    unknown_codes: Tuple[UnknownCode, ...] = ()
    roster: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def replay_version(self) -> Optional[str]:
        return self.raw.get('replay_version')

    def team_ids(self) -> Tuple[str, ...]:
        return tuple(team.id for team in self.teams)


@dataclass(frozen=True)
class TimelineTurn:
    turn_number: int
    team_id: Optional[str]
    raw_event_count: int
    keyword_hits: Dict[str, int]


@dataclass(frozen=True)
class TeamContext:
    mode: str
    offense_turns: int
    defense_turns: int
    ball_control_rate: float


@dataclass(frozen=True)
class AnalysisFinding:
    id: str
    severity: str
    category: str
    title: str
    detail: str
    recommendation: str
    turn_number: Optional[int] = None
    evidence: Tuple[Dict[str, Any], ...] = ()


@dataclass(frozen=True)
class TurnAdvice:
    turn_number: int
    happened: str
    risky_because: str
    safer_alternative: str
    confidence: str
    evidence: Tuple[Dict[str, Any], ...] = ()


def to_dict(obj: Any) -> Any:
    """Convert model values (and containers of them) to JSON-friendly data."""
    if hasattr(obj, '__dataclass_fields__'):
        return to_dict(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): to_dict(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_dict(item) for item in obj]
    return obj
