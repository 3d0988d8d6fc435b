import json
import os
import tempfile
import unittest
from datetime import datetime, timezone

from playoff_pool.config import ScoringRulesCache, Settings, load_settings, parse_time, resolve_current_week
from playoff_pool.models import ScoringRules
from playoff_pool.repository import PoolRepository
from playoff_pool.store import MemoryStore


class TestSettings(unittest.TestCase):
    def test_defaults(self):
        s = load_settings(env={})
        self.assertEqual(s.poll_interval, 60.0)
        self.assertEqual(s.deadline(1), datetime(2026, 1, 10, 21, 30, tzinfo=timezone.utc))
        self.assertEqual(s.deadline(4), datetime(2026, 2, 9, 0, 30, tzinfo=timezone.utc))
        self.assertEqual(s.date_range(3), '20260124-20260126')
        self.assertIsNone(s.deadline(5))

    def test_json_file_then_env(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'settings.json')
            with open(path, 'w', encoding='utf-8') as fh:
                json.dump({
                    'season': '2026-2027',
                    'pollInterval': 30,
                    'lockTimes': {'1': '2027-01-09T21:30:00Z'},
                    'dateRanges': {'1': '20270109-20270112'},
                    'playoffTeams': ['kc', 'buf'],
                }, fh)
            s = load_settings(path, env={'POOL_POLL_INTERVAL': '15', 'POOL_DATA_DIR': tmp})
        self.assertEqual(s.season, '2026-2027')
        self.assertEqual(s.poll_interval, 15.0)
        self.assertEqual(s.data_dir, tmp)
        self.assertEqual(s.store_path, os.path.join(tmp, 'pool.json'))
        self.assertEqual(s.deadline(1), datetime(2027, 1, 9, 21, 30, tzinfo=timezone.utc))
        self.assertEqual(s.deadline(2), datetime(2026, 1, 17, 21, 30, tzinfo=timezone.utc))
        self.assertEqual(s.date_range(1), '20270109-20270112')
        self.assertEqual(s.playoff_teams, ['KC', 'BUF'])

    def test_settings_are_independent(self):
        a, b = Settings(), Settings()
        a.lock_times[1] = parse_time('2030-01-01T00:00:00')
        self.assertNotEqual(a.deadline(1), b.deadline(1))


class TestResolveCurrentWeek(unittest.TestCase):
    def setUp(self):
        self.locks = Settings().lock_times

    def test_date_based(self):
        cases = {
            datetime(2025, 12, 30, tzinfo=timezone.utc): 1,
            datetime(2026, 1, 12, tzinfo=timezone.utc): 1,
            datetime(2026, 1, 18, tzinfo=timezone.utc): 2,
            datetime(2026, 1, 26, tzinfo=timezone.utc): 3,
            datetime(2026, 2, 9, 1, 0, tzinfo=timezone.utc): 4,
        }
        for now, week in cases.items():
            self.assertEqual(resolve_current_week(None, self.locks, now), week, now)

    def test_override_wins(self):
        now = datetime(2026, 1, 12, tzinfo=timezone.utc)
        self.assertEqual(resolve_current_week(3, self.locks, now), 3)

    def test_out_of_range_override_ignored(self):
        now = datetime(2026, 1, 18, tzinfo=timezone.utc)
        self.assertEqual(resolve_current_week(9, self.locks, now), 2)


class TestScoringRulesCache(unittest.TestCase):
    def test_refreshes_on_change(self):
        repo = PoolRepository(MemoryStore())
        cache = ScoringRulesCache(repo)
        self.assertEqual(cache.get(), ScoringRules())
        repo.save_scoring_rules(ScoringRules(reception=0.5))
        self.assertEqual(cache.get().reception, 0.5)
        cache.close()
        repo.save_scoring_rules(ScoringRules(reception=0))
        self.assertEqual(cache.get().reception, 0.5)
        cache.invalidate()
        self.assertEqual(cache.get().reception, 0)


if __name__ == '__main__':
    unittest.main()
