import json
import os
import tempfile
import unittest
from unittest import mock

from playoff_pool.errors import StoreError
from playoff_pool.models import ScoringRules, StatLine, User, WeeklyRoster
from playoff_pool.repository import PoolRepository
from playoff_pool.store import JsonFileStore, MemoryStore, doc_path


class TestMemoryStore(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()

    def test_set_get_merge(self):
        self.store.set('users/u1', {'displayName': 'Ann', 'hasPaid': False})
        self.store.set('users/u1', {'hasPaid': True}, merge=True)
        self.assertEqual(self.store.get('users/u1'), {'displayName': 'Ann', 'hasPaid': True})
        self.store.set('users/u1', {'hasPaid': False})
        self.assertEqual(self.store.get('users/u1'), {'hasPaid': False})

    def test_returned_documents_are_copies(self):
        self.store.set('usedPlayers/u1', {'players': ['a']})
        doc = self.store.get('usedPlayers/u1')
        doc['players'].append('b')
        self.assertEqual(self.store.get('usedPlayers/u1'), {'players': ['a']})

    def test_update_requires_existing_document(self):
        with self.assertRaises(StoreError):
            self.store.update('rosters/u1/weeks/1', {'locked': True})

    def test_scan_is_one_level(self):
        self.store.set('playerStats/wildcard/players/p1', {'sacks': 1})
        self.store.set('playerStats/wildcard/players/p2', {'sacks': 2})
        self.store.set('playerStats/divisional/players/p1', {'sacks': 3})
        self.assertEqual(sorted(self.store.scan('playerStats/wildcard/players')), ['p1', 'p2'])
        self.assertEqual(self.store.scan('playerStats'), {})

    def test_subscribe_and_unsubscribe(self):
        seen = []
        unsubscribe = self.store.subscribe('config', lambda path, doc: seen.append((path, doc)))
        self.store.set('config/scoringRules', {'sack': 2})
        self.store.delete('config/scoringRules')
        self.store.set('users/u1', {})
        unsubscribe()
        self.store.set('config/currentWeek', {'week': 2})
        self.assertEqual(seen, [('config/scoringRules', {'sack': 2}), ('config/scoringRules', None)])

    def test_failing_listener_does_not_break_writes(self):
        self.store.subscribe('users', mock.Mock(side_effect=RuntimeError('bad listener')))
        self.store.set('users/u1', {'displayName': 'Ann'})
        self.assertEqual(self.store.get('users/u1'), {'displayName': 'Ann'})

    def test_children_lists_nested_owners(self):
        self.store.set('rosters/u1/weeks/1', {'qb': 'a'})
        self.store.set('rosters/u2/weeks/2', {'qb': 'b'})
        self.store.set('rostersArchive/u9/weeks/1', {})
        self.assertEqual(self.store.children('rosters'), ['u1', 'u2'])
        self.assertEqual(self.store.children('users'), [])

    def test_doc_path(self):
        self.assertEqual(doc_path('rosters', 'u1', 'weeks', 2), 'rosters/u1/weeks/2')


class TestJsonFileStore(unittest.TestCase):
    def test_persists_between_instances(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'data', 'pool.json')
            JsonFileStore(path).set('users/u1', {'displayName': 'Ann'})
            with open(path, 'r', encoding='utf-8') as fh:
                self.assertIn('users/u1', json.load(fh))
            self.assertEqual(JsonFileStore(path).get('users/u1'), {'displayName': 'Ann'})

    def test_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'pool.json')
            with open(path, 'w', encoding='utf-8') as fh:
                fh.write('{not json')
            with self.assertRaises(StoreError):
                JsonFileStore(path)


class TestPoolRepository(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.repo = PoolRepository(self.store)

    def test_write_failure_returns_false(self):
        with mock.patch.object(self.store, 'set', side_effect=StoreError('unavailable')):
            self.assertFalse(self.repo.save_roster(WeeklyRoster(user_id='u1', week=1)))
            self.assertFalse(self.repo.add_used_players('u1', ['a']))
        self.assertIsNone(self.repo.get_roster('u1', 1))

    def test_rosters_for_week_includes_rosters_without_user(self):
        self.repo.save_user(User(uid='u2', display_name='Bob'))
        self.repo.save_roster(WeeklyRoster(user_id='u2', week=1, qb='a'))
        self.repo.save_roster(WeeklyRoster(user_id='ghost', week=1, qb='b'))
        self.repo.save_roster(WeeklyRoster(user_id='u2', week=2, qb='c'))
        self.assertEqual([r.user_id for r in self.repo.rosters_for_week(1)], ['u2', 'ghost'])
        self.assertEqual([r.user_id for r in self.repo.rosters_for_week(2)], ['u2'])

    def test_lock_missing_roster_returns_false(self):
        self.assertFalse(self.repo.lock_roster('u1', 1))

    def test_used_players_union_keeps_order(self):
        self.repo.add_used_players('u1', ['a', 'b'])
        self.repo.add_used_players('u1', ['b', 'c'])
        self.assertEqual(self.repo.get_used_players('u1').players, ['a', 'b', 'c'])

    def test_stat_lines_round_trip(self):
        line = StatLine(passing_yards=300, fg_50_plus=1, defensive_tds=1)
        self.assertTrue(self.repo.save_stat_line('wildcard', 'p1', line))
        self.assertEqual(self.repo.stats_for_week('wildcard'), {'p1': line})
        stored = self.store.get('playerStats/wildcard/players/p1')
        self.assertEqual(stored['passingYards'], 300)
        self.assertEqual(stored['fg50Plus'], 1)

    def test_scoring_rules_default_and_override(self):
        self.assertEqual(self.repo.scoring_rules(), ScoringRules())
        self.repo.save_scoring_rules(ScoringRules(sack=2))
        self.assertEqual(self.repo.scoring_rules().sack, 2)

    def test_current_week_override(self):
        self.assertIsNone(self.repo.current_week_override())
        self.repo.save_current_week_override(3)
        self.assertEqual(self.repo.current_week_override(), 3)
        self.repo.save_current_week_override(None)
        self.assertIsNone(self.repo.current_week_override())


if __name__ == '__main__':
    unittest.main()
