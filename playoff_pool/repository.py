import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .errors import StoreError
from .models import Player, ScoringRules, StatLine, UsedPlayers, User, WeeklyRoster
from .store import DocumentStore, doc_path

log = logging.getLogger(__name__)

USERS = 'users'
USED_PLAYERS = 'usedPlayers'
ROSTERS = 'rosters'
PLAYERS = 'players'
PLAYER_STATS = 'playerStats'
PLAYER_RANKS = 'playerRanks'
PLAYOFF_CONFIG = 'playoffConfig'
SCORING_RULES_DOC = doc_path('config', 'scoringRules')
CURRENT_WEEK_DOC = doc_path('config', 'currentWeek')


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PoolRepository:
    """Maps pool entities onto store documents.

    Writes return False instead of raising when the store fails; the failure
    is logged here so callers only branch on the flag.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def _write(self, what: str, fn: Callable[[], None]) -> bool:
        try:
            fn()
            return True
        except StoreError as e:
            log.error('Failed to %s: %s', what, e)
            return False

    # users

    def get_user(self, uid: str) -> Optional[User]:
        data = self.store.get(doc_path(USERS, uid))
        return User.from_dict(data, uid=uid) if data is not None else None

    def users(self) -> List[User]:
        return [User.from_dict(d, uid=uid) for uid, d in sorted(self.store.scan(USERS).items())]

    def save_user(self, user: User) -> bool:
        return self._write(f'save user {user.uid}',
                           lambda: self.store.set(doc_path(USERS, user.uid), user.to_dict(), merge=True))

    def set_paid(self, uid: str, has_paid: bool) -> bool:
        return self._write(f'update payment for {uid}',
                           lambda: self.store.update(doc_path(USERS, uid), {'hasPaid': bool(has_paid)}))

    # rosters

    def get_roster(self, uid: str, week: int) -> Optional[WeeklyRoster]:
        data = self.store.get(doc_path(ROSTERS, uid, 'weeks', week))
        if data is None:
            return None
        roster = WeeklyRoster.from_dict(data)
        roster.user_id = roster.user_id or uid
        roster.week = roster.week or week
        return roster

    def save_roster(self, roster: WeeklyRoster) -> bool:
        data = roster.to_dict()
        data['updatedAt'] = _now()
        return self._write(f'save roster {roster.user_id} week {roster.week}',
                           lambda: self.store.set(doc_path(ROSTERS, roster.user_id, 'weeks', roster.week), data))

    def lock_roster(self, uid: str, week: int) -> bool:
        return self._write(f'lock roster {uid} week {week}',
                           lambda: self.store.update(doc_path(ROSTERS, uid, 'weeks', week),
                                                     {'locked': True, 'updatedAt': _now()}))

    def rosters_for_week(self, week: int) -> List[WeeklyRoster]:
        """Rosters in user order, then rosters whose owner has no user document."""
        uids = [u.uid for u in self.users()]
        known = set(uids)
        uids += [uid for uid in self.store.children(ROSTERS) if uid not in known]
        out = []
        for uid in uids:
            roster = self.get_roster(uid, week)
            if roster is not None:
                out.append(roster)
        return out

    def rosters_for_user(self, uid: str) -> Dict[int, WeeklyRoster]:
        return {int(wk): WeeklyRoster.from_dict(d) for wk, d in self.store.scan(doc_path(ROSTERS, uid, 'weeks')).items()}

    # used players ledger

    def get_used_players(self, uid: str) -> UsedPlayers:
        data = self.store.get(doc_path(USED_PLAYERS, uid)) or {}
        return UsedPlayers(user_id=uid, players=list(data.get('players') or []))

    def add_used_players(self, uid: str, player_ids: Iterable[str]) -> bool:
        def write():
            merged = self.get_used_players(uid).union(player_ids)
            self.store.set(doc_path(USED_PLAYERS, uid), {'players': merged.players})
        return self._write(f'update used players for {uid}', write)

    def set_used_players(self, uid: str, player_ids: Iterable[str]) -> bool:
        players = UsedPlayers(user_id=uid).union(player_ids).players
        return self._write(f'replace used players for {uid}',
                           lambda: self.store.set(doc_path(USED_PLAYERS, uid), {'players': players}))

    # players

    def players(self) -> List[Player]:
        return [Player.from_dict(d, player_id=pid) for pid, d in self.store.scan(PLAYERS).items()]

    def get_player(self, player_id: str) -> Optional[Player]:
        data = self.store.get(doc_path(PLAYERS, player_id))
        return Player.from_dict(data, player_id=player_id) if data is not None else None

    def save_players(self, players: Iterable[Player]) -> bool:
        def write():
            for p in players:
                data = p.to_dict()
                data.pop('rank', None)  # ranks live per week under playerRanks
                data['updatedAt'] = _now()
                self.store.set(doc_path(PLAYERS, p.id), data, merge=True)
        return self._write('save players', write)

    def delete_player(self, player_id: str) -> bool:
        return self._write(f'delete player {player_id}', lambda: self.store.delete(doc_path(PLAYERS, player_id)))

    def player_ranks(self, week_name: str) -> Dict[str, int]:
        docs = self.store.scan(doc_path(PLAYER_RANKS, week_name, 'players'))
        return {pid: int(d.get('rank')) for pid, d in docs.items() if d.get('rank') is not None}

    def save_player_ranks(self, week_name: str, ranks: Dict[str, int]) -> bool:
        def write():
            for pid, rank in ranks.items():
                self.store.set(doc_path(PLAYER_RANKS, week_name, 'players', pid), {'rank': int(rank)})
        return self._write(f'save ranks for {week_name}', write)

    # stats

    def stats_for_week(self, week_name: str) -> Dict[str, StatLine]:
        docs = self.store.scan(doc_path(PLAYER_STATS, week_name, 'players'))
        return {pid: StatLine.from_dict(d) for pid, d in docs.items()}

    def get_stat_line(self, week_name: str, player_id: str) -> Optional[StatLine]:
        data = self.store.get(doc_path(PLAYER_STATS, week_name, 'players', player_id))
        return StatLine.from_dict(data) if data is not None else None

    def save_stat_line(self, week_name: str, player_id: str, line: StatLine) -> bool:
        data = line.to_dict()
        data['playerId'] = player_id
        data['updatedAt'] = _now()
        return self._write(f'save stats {week_name}/{player_id}',
                           lambda: self.store.set(doc_path(PLAYER_STATS, week_name, 'players', player_id), data))

    # playoff config

    def playoff_config(self, week_name: str) -> List[str]:
        data = self.store.get(doc_path(PLAYOFF_CONFIG, week_name)) or {}
        return list(data.get('teams') or [])

    def save_playoff_config(self, week_name: str, teams: Iterable[str]) -> bool:
        data = {'teams': list(teams), 'updatedAt': _now()}
        return self._write(f'save playoff config for {week_name}',
                           lambda: self.store.set(doc_path(PLAYOFF_CONFIG, week_name), data))

    # scoring rules and current week

    def scoring_rules(self) -> ScoringRules:
        return ScoringRules.from_dict(self.store.get(SCORING_RULES_DOC))

    def save_scoring_rules(self, rules: ScoringRules) -> bool:
        data = rules.to_dict()
        data['updatedAt'] = _now()
        return self._write('save scoring rules', lambda: self.store.set(SCORING_RULES_DOC, data))

    def subscribe_scoring_rules(self, callback: Callable[[ScoringRules], None]) -> Callable[[], None]:
        return self.store.subscribe(SCORING_RULES_DOC, lambda _path, doc: callback(ScoringRules.from_dict(doc)))

    def current_week_override(self) -> Optional[int]:
        data = self.store.get(CURRENT_WEEK_DOC) or {}
        week = data.get('week')
        try:
            return int(week) if week is not None else None
        except (TypeError, ValueError):
            return None

    def save_current_week_override(self, week: Optional[int]) -> bool:
        return self._write('save current week override',
                           lambda: self.store.set(CURRENT_WEEK_DOC, {'week': week, 'updatedAt': _now()}))
