"""Tests for team attribution and team-scoped replays."""

from replay_types import ReplayTeam
from team_scoping import (
    TeamAttribution,
    build_player_team_lookup,
    build_team_scoped_replay,
    is_generic_team_name,
    select_playable_teams,
    select_team_turns,
)
from replay_builders import event, model, turn, two_teams

ROSTER = {'0:1': 'A', '0:2': 'B', '1:5': 'C', '1:6': 'D'}


class TestPlayerLookup:
    """Tests for build_player_team_lookup."""

    def test_unique_players(self):
        """Test each player maps to its team."""
        assert build_player_team_lookup(ROSTER) == {'1': '0', '2': '0', '5': '1', '6': '1'}

    def test_conflicting_player_excluded(self):
        """Test a player id under two teams is left out."""
        lookup = build_player_team_lookup({'0:9': 'X', '1:9': 'Y', '0:3': 'Z'})
        assert '9' not in lookup
        assert lookup == {'3': '0'}

    def test_malformed_keys_ignored(self):
        """Test keys without a team prefix are skipped."""
        assert build_player_team_lookup({'9': 'X', ':4': 'Y'}) == {}


class TestResolveTurnTeam:
    """Tests for TeamAttribution.resolve_turn_team."""

    def test_direct_team_tag(self):
        """Test a known team tag is used as-is."""
        replay = model(turn(1, team_id='1'), teams=two_teams(), roster=ROSTER)
        assert TeamAttribution(replay).resolve_turn_team(replay.turns[0]) == '1'

    def test_weighted_scoring(self):
        """Test a dodge outweighs a block from the other team."""
        t = turn(1, event('block', player_id='1'), event('dodge', player_id='5'))
        replay = model(t, teams=two_teams(), roster=ROSTER)
        attribution = TeamAttribution(replay)
        assert attribution.score_turn(t) == {'0': 2, '1': 4}
        assert attribution.resolve_turn_team(t) == '1'

    def test_carrier_bonus(self):
        """Test the ball carrier breaks an otherwise even turn."""
        t = turn(1, event('block', player_id='1'), event('block', player_id='5'), carrier='2')
        replay = model(t, teams=two_teams(), roster=ROSTER)
        assert TeamAttribution(replay).resolve_turn_team(t) == '0'

    def test_gamer_hint(self):
        """Test the active gamer hint alone can decide a turn."""
        t = turn(1, gamer_id='200')
        replay = model(t, teams=two_teams(('100', '200')), roster=ROSTER)
        assert TeamAttribution(replay).resolve_turn_team(t) == '1'

    def test_tie_is_undecided(self):
        """Test equal scores give no decision."""
        t = turn(1, event('block', player_id='1'), event('block', player_id='5'))
        replay = model(t, teams=two_teams(), roster=ROSTER)
        assert TeamAttribution(replay).resolve_turn_team(t) is None

    def test_no_evidence_is_undecided(self):
        """Test a turn with nothing attributable gives no decision."""
        t = turn(1, event('block'))
        replay = model(t, teams=two_teams(), roster=ROSTER)
        assert TeamAttribution(replay).resolve_turn_team(t) is None

    def test_conflicting_player_is_undecided(self):
        """Test a turn relying only on an ambiguous player id stays undecided."""
        t = turn(1, event('dodge', player_id='9'), event('block', player_id='9'))
        replay = model(t, teams=two_teams(), roster={'0:9': 'X', '1:9': 'Y'})
        assert TeamAttribution(replay).resolve_turn_team(t) is None

    def test_event_team_tag_fallback(self):
        """Test an event's own team tag is used for unknown players."""
        t = turn(1, event('dodge', player_id='77', team_id='0'))
        replay = model(t, teams=two_teams(), roster=ROSTER)
        assert TeamAttribution(replay).resolve_turn_team(t) == '0'


class TestPlayableTeams:
    """Tests for select_playable_teams."""

    def test_ranked_by_usage(self):
        """Test the two most used teams are selected, most used first."""
        teams = two_teams() + (ReplayTeam(id='2', name='Team 2'),)
        replay = model(
            turn(1, team_id='1'), turn(2, team_id='1'), turn(3, team_id='0'),
            teams=teams, roster=ROSTER,
        )
        assert [t.id for t in select_playable_teams(replay)] == ['1', '0']

    def test_named_teams_when_usage_missing(self):
        """Test non-placeholder names are preferred without usage."""
        teams = (ReplayTeam(id='9', name='Team 9'),) + two_teams()
        replay = model(turn(1), teams=teams)
        assert [t.id for t in select_playable_teams(replay)] == ['0', '1']

    def test_padding(self):
        """Test placeholder teams pad the selection to two."""
        teams = (ReplayTeam(id='0', name='Team 0'), ReplayTeam(id='1', name='Team 1'))
        replay = model(turn(1, team_id='1'), teams=teams)
        assert [t.id for t in select_playable_teams(replay)] == ['1', '0']

    def test_generic_name(self):
        """Test placeholder name detection."""
        assert is_generic_team_name('Team 3')
        assert not is_generic_team_name('Team Awesome')


class TestScopedReplay:
    """Tests for build_team_scoped_replay."""

    def test_direct_turns_renumbered(self):
        """Test tagged turns are selected and renumbered from 1."""
        replay = model(
            turn(1, team_id='0'), turn(2, team_id='1'), turn(3, team_id='0'),
            teams=two_teams(), roster=ROSTER,
        )
        scoped = build_team_scoped_replay(replay, '0')
        assert [t.turn_number for t in scoped.turns] == [1, 2]
        assert [t.raw['original_turn_number'] for t in scoped.turns] == [1, 3]
        assert scoped.raw['scoped_team_id'] == '0'

    def test_opponent_events_removed(self):
        """Test events owned by the other team are dropped, unowned kept."""
        t = turn(1, event('dodge', player_id='1'), event('block', player_id='5'), event('reroll'), team_id='0')
        replay = model(t, teams=two_teams(), roster=ROSTER)
        scoped = build_team_scoped_replay(replay, '0')
        assert [e.type for e in scoped.turns[0].events] == ['dodge', 'reroll']
        assert scoped.turns[0].event_count == 2

    def test_opponent_carrier_nulled(self):
        """Test a carrier from the other team is cleared."""
        replay = model(turn(1, team_id='0', carrier='5'), teams=two_teams(), roster=ROSTER)
        assert build_team_scoped_replay(replay, '0').turns[0].ball_carrier_player_id is None

    def test_inferred_turns(self):
        """Test attribution is used when turns carry no team tag."""
        replay = model(
            turn(1, event('dodge', player_id='1')),
            turn(2, event('dodge', player_id='5')),
            turn(3, event('blitz', player_id='2')),
            teams=two_teams(), roster=ROSTER,
        )
        assert [t.turn_number for t in select_team_turns(replay, '0')] == [1, 3]

    def test_parity_fallback(self):
        """Test alternating turns are used when nothing can be attributed."""
        replay = model(turn(1), turn(2), turn(3), turn(4), teams=two_teams())
        assert [t.turn_number for t in select_team_turns(replay, '1')] == [2, 4]

    def test_cap(self):
        """Test scoped replays keep at most max_turns turns."""
        turns = [turn(n, team_id='0') for n in range(1, 21)]
        replay = model(*turns, teams=two_teams())
        assert len(build_team_scoped_replay(replay, '0').turns) == 16
        assert len(build_team_scoped_replay(replay, '0', max_turns=5).turns) == 5

    def test_original_untouched(self):
        """Test scoping returns a copy and leaves the source replay alone."""
        t = turn(1, event('dodge', player_id='1'), event('block', player_id='5'), team_id='0')
        replay = model(t, teams=two_teams(), roster=ROSTER)
        scoped = build_team_scoped_replay(replay, '0')
        assert len(replay.turns[0].events) == 2
        assert scoped.roster == replay.roster
        assert scoped.roster is not replay.roster

    def test_event_payloads_copied(self):
        """Test scoped events carry their own payload dicts."""
        t = turn(1, event('block', player_id='1', payload={'Action': '2'}), team_id='0')
        replay = model(t, teams=two_teams(), roster=ROSTER)
        scoped_event = build_team_scoped_replay(replay, '0').turns[0].events[0]
        source_event = replay.turns[0].events[0]
        assert scoped_event.payload == {'Action': '2'}
        assert scoped_event.payload is not source_event.payload
        scoped_event.payload['Action'] = '9'
        assert source_event.payload == {'Action': '2'}
