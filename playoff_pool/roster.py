import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import IncompleteRosterError, RosterLockedError, RosterValidationError
from .models import ROSTER_SLOTS, SLOT_POSITIONS, Player, UsedPlayers, User, WeeklyRoster

log = logging.getLogger(__name__)


class RosterState(enum.Enum):
    UNSET = 'unset'
    DRAFT = 'draft'
    LOCKED = 'locked'


@dataclass
class LockResult:
    locked: bool
    used_players_committed: bool


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RosterManager:
    """Draft/lock lifecycle for one user's roster in one playoff week.

    Locking is two separate writes: the roster document first, then the
    used-players ledger. If the second write fails the roster stays locked
    and ``repair_used_players`` brings the ledger back in line.
    """

    def __init__(self, repo, user_id: str, week: int, settings=None):
        self.repo = repo
        self.user_id = user_id
        self.week = int(week)
        self.settings = settings
        self._roster: Optional[WeeklyRoster] = None
        self._used: Optional[UsedPlayers] = None

    @property
    def roster(self) -> WeeklyRoster:
        if self._roster is None:
            return self.load()
        return self._roster

    @property
    def state(self) -> RosterState:
        if self._roster is None:
            return RosterState.UNSET
        return RosterState.LOCKED if self._roster.locked else RosterState.DRAFT

    def load(self) -> WeeklyRoster:
        stored = self.repo.get_roster(self.user_id, self.week)
        self._roster = stored or WeeklyRoster(user_id=self.user_id, week=self.week)
        self._used = self.repo.get_used_players(self.user_id)
        return self._roster

    @property
    def used_players(self) -> UsedPlayers:
        if self._used is None:
            self._used = self.repo.get_used_players(self.user_id)
        return self._used

    def is_deadline_passed(self, now: Optional[datetime] = None) -> bool:
        deadline = self.settings.deadline(self.week) if self.settings else None
        if deadline is None:
            return False
        return (now or _now()) >= deadline

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        """Locked for editing: explicitly locked, or past the week's deadline."""
        return self.roster.locked or self.is_deadline_passed(now)

    def set_slot(self, slot: str, player_id: Optional[str], now: Optional[datetime] = None) -> None:
        if slot not in SLOT_POSITIONS:
            raise RosterValidationError(f'Unknown roster slot {slot!r}')
        if self.is_locked(now):
            raise RosterLockedError(f'Roster for week {self.week} is locked')
        setattr(self.roster, slot, player_id or None)

    def save(self, now: Optional[datetime] = None) -> bool:
        if self.is_locked(now):
            raise RosterLockedError(f'Roster for week {self.week} is locked')
        return self.repo.save_roster(self.roster)

    def lock(self) -> LockResult:
        roster = self.roster
        if roster.locked:
            raise RosterLockedError(f'Roster for week {self.week} is already locked')
        if not roster.is_complete():
            empty = [s for s, pid in roster.slots().items() if not pid]
            raise IncompleteRosterError(f'All roster slots must be filled before locking (empty: {", ".join(empty)})')

        locked = replace(roster, locked=True)
        if not self.repo.save_roster(locked):
            return LockResult(locked=False, used_players_committed=False)
        self._roster = locked

        player_ids = locked.player_ids()
        if not self.repo.add_used_players(self.user_id, player_ids):
            log.warning('Roster %s week %d locked but used players not recorded; run repair', self.user_id, self.week)
            return LockResult(locked=True, used_players_committed=False)
        self._used = self.used_players.union(player_ids)
        return LockResult(locked=True, used_players_committed=True)

    def is_eligible(self, player: Player, slot: str) -> bool:
        """Whether ``player`` may be picked into ``slot`` this week."""
        if SLOT_POSITIONS.get(slot) != player.position:
            return False
        if player.id in self.used_players:
            return False
        for other, pid in self.roster.slots().items():
            if pid == player.id and other != slot:
                return False
        return True

    def eligible_players(self, slot: str, players: Iterable[Player]) -> List[Player]:
        return [p for p in players if self.is_eligible(p, slot)]


@dataclass
class BulkLockResult:
    week: int
    locked: List[str] = field(default_factory=list)
    already_locked: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    ledger_failed: List[str] = field(default_factory=list)

    @property
    def successes(self) -> int:
        return len(self.locked) + len(self.already_locked)


def bulk_lock_week(repo, week: int) -> BulkLockResult:
    """Lock every unlocked roster for ``week`` and record its players as used.

    Already-locked rosters count as successes. Incomplete rosters are left in
    draft and reported as failures.
    """
    result = BulkLockResult(week=week)
    for roster in repo.rosters_for_week(week):
        uid = roster.user_id
        if roster.locked:
            result.already_locked.append(uid)
            continue
        if not roster.is_complete():
            log.warning('Not locking incomplete roster %s week %d', uid, week)
            result.failed.append(uid)
            continue
        if not repo.lock_roster(uid, week):
            result.failed.append(uid)
            continue
        result.locked.append(uid)
        if not repo.add_used_players(uid, roster.player_ids()):
            result.ledger_failed.append(uid)
    log.info('Bulk lock week %d: %d locked, %d already locked, %d failed', week, len(result.locked),
             len(result.already_locked), len(result.failed))
    return result


def enforce_deadline(repo, settings, week: int, now: Optional[datetime] = None) -> Optional[BulkLockResult]:
    """Commit the week's rosters through the bulk lock once its deadline has passed."""
    deadline = settings.deadline(week)
    if deadline is None or (now or _now()) < deadline:
        return None
    return bulk_lock_week(repo, week)


def set_manual_roster(repo, user_id: str, week: int, slots: Mapping[str, Optional[str]]) -> LockResult:
    """Admin backfill for a user who missed the deadline: store a complete roster already locked.

    Ignores the deadline and any existing roster for the week. Used players
    are recorded the same way ``RosterManager.lock`` records them.
    """
    unknown = sorted(set(slots) - set(ROSTER_SLOTS))
    if unknown:
        raise RosterValidationError(f'Unknown roster slots: {", ".join(unknown)}')
    roster = WeeklyRoster(user_id=user_id, week=int(week), locked=True)
    for slot in ROSTER_SLOTS:
        setattr(roster, slot, slots.get(slot) or None)
    if not roster.is_complete():
        empty = [s.upper() for s, pid in roster.slots().items() if not pid]
        raise IncompleteRosterError(f'Missing: {", ".join(empty)}')
    ids = roster.player_ids()
    if len(set(ids)) != len(ids):
        raise RosterValidationError('A player can only fill one slot')

    if not repo.save_roster(roster):
        return LockResult(locked=False, used_players_committed=False)
    log.info('Manual roster saved for %s week %d', user_id, roster.week)
    if not repo.add_used_players(user_id, ids):
        log.warning('Manual roster %s week %d saved but used players not recorded; run repair', user_id, roster.week)
        return LockResult(locked=True, used_players_committed=False)
    return LockResult(locked=True, used_players_committed=True)


def repair_used_players(repo, user_id: str) -> Optional[List[str]]:
    """Rebuild a user's ledger from their locked rosters. Returns the new ledger, or None if the write failed."""
    rosters = repo.rosters_for_user(user_id)
    ledger = UsedPlayers(user_id=user_id)
    for week in sorted(rosters):
        if rosters[week].locked:
            ledger = ledger.union(rosters[week].player_ids())
    if not repo.set_used_players(user_id, ledger.players):
        return None
    return ledger.players


def repair_all_used_players(repo) -> Dict[str, Optional[List[str]]]:
    return {u.uid: repair_used_players(repo, u.uid) for u in repo.users()}


def reset_used_players(repo, user_id: str) -> bool:
    return repo.set_used_players(user_id, [])


def missing_lineups(repo, week: int) -> List[User]:
    """Users without a complete roster for ``week``."""
    missing = []
    for user in repo.users():
        roster = repo.get_roster(user.uid, week)
        if roster is None or not roster.is_complete():
            missing.append(user)
    return missing


@dataclass
class PlayerUsage:
    player_id: str
    used_by: List[str] = field(default_factory=list)
    in_rosters: List[Tuple[str, int, str]] = field(default_factory=list)  # (user, week, slot)

    @property
    def in_use(self) -> bool:
        return bool(self.used_by or self.in_rosters)


def player_usage(repo, player_id: str) -> PlayerUsage:
    usage = PlayerUsage(player_id=player_id)
    for user in repo.users():
        if player_id in repo.get_used_players(user.uid):
            usage.used_by.append(user.uid)
        for week, roster in sorted(repo.rosters_for_user(user.uid).items()):
            for slot in ROSTER_SLOTS:
                if getattr(roster, slot) == player_id:
                    usage.in_rosters.append((user.uid, week, slot))
    return usage


def remove_duplicate_player(repo, keep_id: str, drop_id: str) -> bool:
    """Delete ``drop_id`` in favour of ``keep_id``, taking over the duplicate's name.

    Refuses when the duplicate appears in any roster or ledger, since deleting
    it would orphan those picks.
    """
    if keep_id == drop_id:
        raise RosterValidationError('Cannot merge a player into itself')
    keep = repo.get_player(keep_id)
    drop = repo.get_player(drop_id)
    if keep is None or drop is None:
        raise RosterValidationError(f'Unknown player {keep_id if keep is None else drop_id!r}')
    usage = player_usage(repo, drop_id)
    if usage.in_use:
        raise RosterValidationError(
            f'{drop_id} is used by {len(usage.used_by)} users and in {len(usage.in_rosters)} rosters; migrate manually')
    keep.name = drop.name
    return repo.save_players([keep]) and repo.delete_player(drop_id)
