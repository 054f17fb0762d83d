"""Tests for the per-turn timeline."""

from dataclasses import replace

from replay_timeline import TRACKED_CATEGORIES, build_timeline, keyword_hits
from replay_builders import event, model, turn


class TestKeywordHits:
    """Tests for keyword_hits."""

    def test_typed_events_counted(self):
        """Test typed events count toward their category."""
        t = turn(1, event('dodge'), event('dodge'), event('block'))
        hits = keyword_hits(t)
        assert hits['dodge'] == 2
        assert hits['block'] == 1
        assert hits['blitz'] == 0

    def test_keywords_in_raw_data(self):
        """Test keyword matches in the raw snapshot are counted."""
        t = replace(turn(1), raw={'note': 'Blitz then blitzed again, turn over'})
        hits = keyword_hits(t)
        assert hits['blitz'] == 2
        assert hits['turnover'] == 1

    def test_max_of_both_sources(self):
        """Test the larger of the two counts is reported."""
        t = replace(turn(1, event('reroll')), raw={'a': 'reroll', 'b': 're-roll', 'c': 're roll'})
        assert keyword_hits(t)['reroll'] == 4

    def test_all_categories_present(self):
        """Test every tracked category is reported."""
        assert set(keyword_hits(turn(1))) == set(TRACKED_CATEGORIES)


class TestBuildTimeline:
    """Tests for build_timeline."""

    def test_one_entry_per_turn(self):
        """Test turn numbers and teams carry over."""
        replay = model(turn(1, team_id='0'), turn(2, event('block'), team_id='1'))
        timeline = build_timeline(replay)
        assert [(e.turn_number, e.team_id) for e in timeline] == [(1, '0'), (2, '1')]

    def test_raw_event_count_minimum(self):
        """Test empty turns still report one raw event."""
        replay = model(turn(1), turn(2, event('block'), event('dodge')))
        assert [e.raw_event_count for e in build_timeline(replay)] == [1, 2]

    def test_empty_replay(self):
        """Test a replay without turns gives an empty timeline."""
        assert build_timeline(model()) == []
