from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from .models import POSITIONS, ROSTER_SLOTS, SLOT_POSITIONS, Player, ScoringRules, StatLine, User, WeeklyRoster, week_name
from .scoring import ScoringEngine, round_points


@dataclass
class PlayerScore:
    slot: str
    player_id: Optional[str]
    name: str
    position: str
    points: float = 0.0
    has_stats: bool = False


@dataclass
class RosterScore:
    user_id: str
    week: int
    total: float
    players: List[PlayerScore] = field(default_factory=list)


@dataclass
class StandingRow:
    rank: int
    user_id: str
    display_name: str
    total: float
    weeks: Dict[int, float] = field(default_factory=dict)
    players: List[PlayerScore] = field(default_factory=list)


@dataclass
class WeekData:
    rosters: List[WeeklyRoster]
    stats: Dict[str, StatLine]


def score_roster(roster: WeeklyRoster, stats_by_player: Mapping[str, StatLine], players: Mapping[str, Player],
                 rules: Optional[ScoringRules] = None) -> RosterScore:
    """Score each slot; a player without a stat line yet scores 0."""
    engine = ScoringEngine(rules)
    scored = []
    for slot in ROSTER_SLOTS:
        pid = getattr(roster, slot)
        player = players.get(pid) if pid else None
        position = player.position if player else SLOT_POSITIONS[slot]
        line = stats_by_player.get(pid) if pid else None
        scored.append(PlayerScore(
            slot=slot,
            player_id=pid,
            name=player.name if player else (pid or ''),
            position=position,
            points=engine.score(line, position) if line is not None else 0.0,
            has_stats=line is not None,
        ))
    total = round_points(sum(p.points for p in scored))
    return RosterScore(user_id=roster.user_id, week=roster.week, total=total, players=scored)


def _name(user: Optional[User], uid: str) -> str:
    if user is None:
        return uid
    return user.display_name or user.email or uid


def _ranked(rows: List[StandingRow]) -> List[StandingRow]:
    # stable: tied totals keep user order
    rows = sorted(rows, key=lambda r: r.total, reverse=True)
    for i, row in enumerate(rows, start=1):
        row.rank = i
    return rows


def week_standings(week: int, users: Sequence[User], rosters: Iterable[WeeklyRoster],
                   stats_by_player: Mapping[str, StatLine], players: Mapping[str, Player],
                   rules: Optional[ScoringRules] = None) -> List[StandingRow]:
    """Rank users with a roster for ``week``; users without one are left out, not scored 0."""
    by_user = {r.user_id: r for r in rosters}
    rows = []
    for user in users:
        roster = by_user.get(user.uid)
        if roster is None:
            continue
        score = score_roster(roster, stats_by_player, players, rules)
        rows.append(StandingRow(0, user.uid, _name(user, user.uid), score.total, {week: score.total}, score.players))
    return _ranked(rows)


def cumulative_standings(weeks_data: Mapping[int, WeekData], users: Sequence[User], players: Mapping[str, Player],
                         rules: Optional[ScoringRules] = None, up_to_week: Optional[int] = None) -> List[StandingRow]:
    """Sum weekly totals through ``up_to_week`` inclusive."""
    included = sorted(w for w in weeks_data if up_to_week is None or w <= up_to_week)
    weekly: Dict[str, Dict[int, float]] = {}
    for week in included:
        data = weeks_data[week]
        for row in week_standings(week, users, data.rosters, data.stats, players, rules):
            weekly.setdefault(row.user_id, {})[week] = row.total
    rows = []
    for user in users:
        if user.uid not in weekly:
            continue
        weeks = weekly[user.uid]
        rows.append(StandingRow(0, user.uid, _name(user, user.uid), round_points(sum(weeks.values())), dict(weeks)))
    return _ranked(rows)


def load_week_data(repo, week: int) -> WeekData:
    return WeekData(rosters=repo.rosters_for_week(week), stats=repo.stats_for_week(week_name(week)))


def standings_frame(rows: Sequence[StandingRow]) -> pd.DataFrame:
    """Flatten standings into a frame with one column per week, for printing or CSV export."""
    weeks = sorted({w for r in rows for w in r.weeks})
    records = []
    for r in rows:
        rec = {'rank': r.rank, 'user': r.display_name, 'total': r.total}
        for w in weeks:
            rec[week_name(w)] = r.weeks.get(w)
        records.append(rec)
    return pd.DataFrame(records, columns=['rank', 'user', 'total'] + [week_name(w) for w in weeks])


def pick_counts(rosters: Iterable[WeeklyRoster]) -> Dict[str, int]:
    """How many rosters picked each player, most picked first."""
    counts = Counter(pid for r in rosters for pid in r.player_ids())
    return dict(counts.most_common())


def remaining_players(players: Iterable[Player], used_ids: Iterable[str], active_teams: Iterable[str]) -> Dict[str, List[Player]]:
    """Players still pickable (unused, on a team still alive), grouped by position."""
    used = set(used_ids)
    teams = set(active_teams)
    grouped: Dict[str, List[Player]] = {pos: [] for pos in POSITIONS}
    for p in players:
        if p.id in used or p.team not in teams or p.position not in grouped:
            continue
        grouped[p.position].append(p)
    for pos in grouped:
        grouped[pos].sort(key=lambda p: (p.rank is None, p.rank or 0, p.name))
    return grouped
