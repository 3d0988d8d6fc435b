import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from playoff_pool.config import Settings
from playoff_pool.errors import IncompleteRosterError, RosterLockedError, RosterValidationError
from playoff_pool.models import Player, User, WeeklyRoster
from playoff_pool.repository import PoolRepository
from playoff_pool.roster import (
    RosterManager,
    RosterState,
    bulk_lock_week,
    enforce_deadline,
    missing_lineups,
    player_usage,
    remove_duplicate_player,
    repair_used_players,
    reset_used_players,
    set_manual_roster,
)
from playoff_pool.store import MemoryStore

LINEUP = {
    'qb': 'qb1', 'rb1': 'rb1', 'rb2': 'rb2', 'wr1': 'wr1', 'wr2': 'wr2',
    'wr3': 'wr3', 'te': 'te1', 'dst': 'DST-KC', 'k': 'k1',
}

DEADLINE = datetime(2026, 1, 10, 21, 30, tzinfo=timezone.utc)
BEFORE = DEADLINE - timedelta(hours=1)
AFTER = DEADLINE + timedelta(minutes=1)


def _settings():
    s = Settings()
    s.lock_times = {1: DEADLINE, 2: DEADLINE + timedelta(days=7)}
    return s


def _fill(manager, lineup=LINEUP, skip=()):
    for slot, pid in lineup.items():
        if slot not in skip:
            manager.set_slot(slot, pid, now=BEFORE)


class RosterTestCase(unittest.TestCase):
    def setUp(self):
        self.repo = PoolRepository(MemoryStore())
        for uid in ('u1', 'u2', 'u3'):
            self.repo.save_user(User(uid=uid, display_name=uid.upper(), email=f'{uid}@example.com'))
        self.settings = _settings()

    def manager(self, uid='u1', week=1):
        return RosterManager(self.repo, uid, week, self.settings)

    def store_roster(self, uid, week, locked=False, **slots):
        roster = WeeklyRoster(user_id=uid, week=week, locked=locked, **slots)
        self.repo.save_roster(roster)
        return roster


class TestRosterManager(RosterTestCase):
    def test_states(self):
        m = self.manager()
        self.assertEqual(m.state, RosterState.UNSET)
        m.load()
        self.assertEqual(m.state, RosterState.DRAFT)
        self.assertIsNone(self.repo.get_roster('u1', 1))

    def test_draft_save_and_reload(self):
        m = self.manager()
        m.set_slot('qb', 'qb1', now=BEFORE)
        self.assertTrue(m.save(now=BEFORE))
        self.assertEqual(self.repo.get_roster('u1', 1).qb, 'qb1')
        m.set_slot('qb', None, now=BEFORE)
        self.assertIsNone(m.roster.qb)

    def test_unknown_slot(self):
        with self.assertRaises(RosterValidationError):
            self.manager().set_slot('flex', 'qb1', now=BEFORE)

    def test_incomplete_roster_cannot_lock(self):
        m = self.manager()
        _fill(m, skip=('k',))
        m.save(now=BEFORE)
        with self.assertRaises(IncompleteRosterError):
            m.lock()
        self.assertEqual(m.state, RosterState.DRAFT)
        self.assertFalse(self.repo.get_roster('u1', 1).locked)
        self.assertEqual(self.repo.get_used_players('u1').players, [])

    def test_lock_commits_used_players(self):
        m = self.manager()
        _fill(m)
        result = m.lock()
        self.assertTrue(result.locked)
        self.assertTrue(result.used_players_committed)
        self.assertEqual(m.state, RosterState.LOCKED)
        self.assertTrue(self.repo.get_roster('u1', 1).locked)
        self.assertEqual(sorted(self.repo.get_used_players('u1').players), sorted(LINEUP.values()))

    def test_locked_roster_rejects_edits(self):
        m = self.manager()
        _fill(m)
        m.lock()
        with self.assertRaises(RosterLockedError):
            m.set_slot('qb', 'other', now=BEFORE)
        with self.assertRaises(RosterLockedError):
            m.save(now=BEFORE)
        with self.assertRaises(RosterLockedError):
            m.lock()
        self.assertEqual(self.repo.get_roster('u1', 1).qb, 'qb1')

    def test_ledger_failure_keeps_roster_locked(self):
        m = self.manager()
        _fill(m)
        with mock.patch.object(self.repo, 'add_used_players', return_value=False):
            result = m.lock()
        self.assertTrue(result.locked)
        self.assertFalse(result.used_players_committed)
        self.assertEqual(m.state, RosterState.LOCKED)
        self.assertTrue(self.repo.get_roster('u1', 1).locked)
        self.assertEqual(self.repo.get_used_players('u1').players, [])

        repaired = repair_used_players(self.repo, 'u1')
        self.assertEqual(sorted(repaired), sorted(LINEUP.values()))
        self.assertEqual(sorted(self.repo.get_used_players('u1').players), sorted(LINEUP.values()))

    def test_roster_write_failure_leaves_draft(self):
        m = self.manager()
        _fill(m)
        with mock.patch.object(self.repo, 'save_roster', return_value=False):
            result = m.lock()
        self.assertFalse(result.locked)
        self.assertEqual(m.state, RosterState.DRAFT)
        self.assertEqual(self.repo.get_used_players('u1').players, [])

    def test_deadline_makes_roster_read_only(self):
        m = self.manager()
        m.set_slot('qb', 'qb1', now=BEFORE)
        self.assertFalse(m.is_deadline_passed(BEFORE))
        self.assertTrue(m.is_deadline_passed(AFTER))
        self.assertTrue(m.is_locked(AFTER))
        with self.assertRaises(RosterLockedError):
            m.set_slot('qb', 'qb2', now=AFTER)
        # display lock only: nothing was committed
        self.assertEqual(self.repo.get_used_players('u1').players, [])

    def test_no_deadline_configured(self):
        m = RosterManager(self.repo, 'u1', 1)
        self.assertFalse(m.is_deadline_passed(AFTER))


class TestEligibility(RosterTestCase):
    def setUp(self):
        super().setUp()
        self.qb1 = Player('qb1', 'Patrick Mahomes', 'KC', 'QB')
        self.qb2 = Player('qb2', 'Josh Allen', 'BUF', 'QB')
        self.wr1 = Player('wr1', 'Rashee Rice', 'KC', 'WR')
        self.wr9 = Player('wr9', 'Khalil Shakir', 'BUF', 'WR')

    def test_used_player_not_eligible_in_later_week(self):
        week1 = self.manager(week=1)
        _fill(week1)
        week1.lock()
        week2 = self.manager(week=2)
        week2.load()
        self.assertFalse(week2.is_eligible(self.qb1, 'qb'))
        self.assertTrue(week2.is_eligible(self.qb2, 'qb'))

    def test_position_must_match_slot(self):
        m = self.manager()
        self.assertFalse(m.is_eligible(self.qb2, 'wr1'))
        self.assertTrue(m.is_eligible(self.wr9, 'wr3'))

    def test_no_duplicate_within_week(self):
        m = self.manager()
        m.set_slot('wr1', 'wr1', now=BEFORE)
        self.assertFalse(m.is_eligible(self.wr1, 'wr2'))
        self.assertTrue(m.is_eligible(self.wr1, 'wr1'))

    def test_eligible_players(self):
        m = self.manager()
        m.set_slot('wr1', 'wr1', now=BEFORE)
        picks = m.eligible_players('wr2', [self.qb1, self.wr1, self.wr9])
        self.assertEqual(picks, [self.wr9])


class TestAdmin(RosterTestCase):
    def test_bulk_lock_is_idempotent(self):
        self.store_roster('u1', 1, **LINEUP)
        self.store_roster('u2', 1, locked=True, **LINEUP)
        self.store_roster('u3', 1, qb='qb1')

        first = bulk_lock_week(self.repo, 1)
        self.assertEqual(first.locked, ['u1'])
        self.assertEqual(first.already_locked, ['u2'])
        self.assertEqual(first.failed, ['u3'])
        self.assertEqual(len(self.repo.get_used_players('u1').players), 9)
        self.assertFalse(self.repo.get_roster('u3', 1).locked)

        second = bulk_lock_week(self.repo, 1)
        self.assertEqual(second.locked, [])
        self.assertEqual(second.already_locked, ['u1', 'u2'])
        self.assertEqual(second.successes, 2)

    def test_bulk_lock_reports_ledger_failures(self):
        self.store_roster('u1', 1, **LINEUP)
        with mock.patch.object(self.repo, 'add_used_players', return_value=False):
            result = bulk_lock_week(self.repo, 1)
        self.assertEqual(result.locked, ['u1'])
        self.assertEqual(result.ledger_failed, ['u1'])

    def test_enforce_deadline(self):
        self.store_roster('u1', 1, **LINEUP)
        self.assertIsNone(enforce_deadline(self.repo, self.settings, 1, now=BEFORE))
        self.assertFalse(self.repo.get_roster('u1', 1).locked)
        result = enforce_deadline(self.repo, self.settings, 1, now=AFTER)
        self.assertEqual(result.locked, ['u1'])
        self.assertIn('qb1', self.repo.get_used_players('u1'))

    def test_manual_roster_after_deadline(self):
        m = self.manager()
        self.assertTrue(m.is_deadline_passed(AFTER))
        with self.assertRaises(RosterLockedError):
            m.set_slot('qb', 'qb1', now=AFTER)

        result = set_manual_roster(self.repo, 'u1', 1, LINEUP)
        self.assertTrue(result.locked)
        self.assertTrue(result.used_players_committed)
        stored = self.repo.get_roster('u1', 1)
        self.assertTrue(stored.locked)
        self.assertEqual(stored.slots(), LINEUP)
        self.assertEqual(sorted(self.repo.get_used_players('u1').players), sorted(LINEUP.values()))
        self.assertEqual(self.manager().state, RosterState.UNSET)
        reloaded = self.manager()
        reloaded.load()
        self.assertEqual(reloaded.state, RosterState.LOCKED)

    def test_manual_roster_must_be_complete(self):
        with self.assertRaises(IncompleteRosterError):
            set_manual_roster(self.repo, 'u1', 1, dict(LINEUP, k=''))
        self.assertIsNone(self.repo.get_roster('u1', 1))
        self.assertEqual(self.repo.get_used_players('u1').players, [])

    def test_manual_roster_rejects_bad_slots(self):
        with self.assertRaises(RosterValidationError):
            set_manual_roster(self.repo, 'u1', 1, dict(LINEUP, flex='x'))
        with self.assertRaises(RosterValidationError):
            set_manual_roster(self.repo, 'u1', 1, dict(LINEUP, wr2='wr1'))

    def test_manual_roster_ledger_failure(self):
        with mock.patch.object(self.repo, 'add_used_players', return_value=False):
            result = set_manual_roster(self.repo, 'u1', 1, LINEUP)
        self.assertEqual((result.locked, result.used_players_committed), (True, False))
        self.assertEqual(repair_used_players(self.repo, 'u1'), list(LINEUP.values()))

    def test_bulk_lock_finds_roster_without_user(self):
        self.store_roster('ghost', 1, **LINEUP)
        result = bulk_lock_week(self.repo, 1)
        self.assertEqual(result.locked, ['ghost'])
        self.assertTrue(self.repo.get_roster('ghost', 1).locked)

    def test_repair_ignores_unlocked_weeks(self):
        self.store_roster('u1', 1, locked=True, **LINEUP)
        self.store_roster('u1', 2, qb='qb2')
        self.repo.set_used_players('u1', ['stale'])
        players = repair_used_players(self.repo, 'u1')
        self.assertEqual(players, list(LINEUP.values()))

    def test_reset_used_players(self):
        self.repo.add_used_players('u1', ['a'])
        self.assertTrue(reset_used_players(self.repo, 'u1'))
        self.assertEqual(self.repo.get_used_players('u1').players, [])

    def test_missing_lineups(self):
        self.store_roster('u1', 1, **LINEUP)
        self.store_roster('u2', 1, qb='qb1')
        self.assertEqual([u.uid for u in missing_lineups(self.repo, 1)], ['u2', 'u3'])

    def test_player_usage_and_duplicate_cleanup(self):
        self.repo.save_players([
            Player('k-buffalo-kicker', 'Buffalo Kicker', 'BUF', 'K'),
            Player('k-prater', 'Matt Prater', 'BUF', 'K'),
        ])
        self.store_roster('u1', 1, locked=True, k='k-buffalo-kicker')
        self.repo.add_used_players('u1', ['k-buffalo-kicker'])

        usage = player_usage(self.repo, 'k-buffalo-kicker')
        self.assertEqual(usage.used_by, ['u1'])
        self.assertEqual(usage.in_rosters, [('u1', 1, 'k')])
        self.assertFalse(player_usage(self.repo, 'k-prater').in_use)

        with self.assertRaises(RosterValidationError):
            remove_duplicate_player(self.repo, 'k-prater', 'k-buffalo-kicker')

        self.assertTrue(remove_duplicate_player(self.repo, 'k-buffalo-kicker', 'k-prater'))
        self.assertIsNone(self.repo.get_player('k-prater'))
        self.assertEqual(self.repo.get_player('k-buffalo-kicker').name, 'Matt Prater')


if __name__ == '__main__':
    unittest.main()
