from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Mapping, Optional

POSITIONS = ('QB', 'RB', 'WR', 'TE', 'K', 'DST')

NFL_TEAMS = (
    'ARI', 'ATL', 'BAL', 'BUF', 'CAR', 'CHI', 'CIN', 'CLE',
    'DAL', 'DEN', 'DET', 'GB', 'HOU', 'IND', 'JAX', 'KC',
    'LAC', 'LAR', 'LV', 'MIA', 'MIN', 'NE', 'NO', 'NYG',
    'NYJ', 'PHI', 'PIT', 'SEA', 'SF', 'TB', 'TEN', 'WAS',
)

# vendor abbreviations that differ from ours
TEAM_ALIASES = {
    'WSH': 'WAS',
    'JAC': 'JAX',
}

ROSTER_SLOTS = ('qb', 'rb1', 'rb2', 'wr1', 'wr2', 'wr3', 'te', 'dst', 'k')

SLOT_POSITIONS = {
    'qb': 'QB',
    'rb1': 'RB',
    'rb2': 'RB',
    'wr1': 'WR',
    'wr2': 'WR',
    'wr3': 'WR',
    'te': 'TE',
    'dst': 'DST',
    'k': 'K',
}


def normalize_team(abbr: Optional[str]) -> Optional[str]:
    """Map a vendor team abbreviation onto one of the 32 league codes, or None."""
    if not abbr:
        return None
    upper = str(abbr).strip().upper()
    upper = TEAM_ALIASES.get(upper, upper)
    return upper if upper in NFL_TEAMS else None


@dataclass(frozen=True)
class PlayoffWeek:
    number: int
    name: str
    label: str
    short_label: str


PLAYOFF_WEEKS = (
    PlayoffWeek(1, 'wildcard', 'Wild Card', 'WC'),
    PlayoffWeek(2, 'divisional', 'Divisional', 'DIV'),
    PlayoffWeek(3, 'championship', 'Conference Championships', 'CONF'),
    PlayoffWeek(4, 'superbowl', 'Super Bowl', 'SB'),
)

WEEK_NAMES = {w.number: w.name for w in PLAYOFF_WEEKS}
WEEK_NUMBERS = {w.name: w.number for w in PLAYOFF_WEEKS}


def week_name(number: int) -> str:
    try:
        return WEEK_NAMES[int(number)]
    except (KeyError, TypeError, ValueError):
        raise ValueError(f'Unknown playoff week number: {number!r}')


def week_number(name: str) -> int:
    try:
        return WEEK_NUMBERS[name]
    except KeyError:
        raise ValueError(f'Unknown playoff week name: {name!r}')


def _count(value: Any) -> int:
    """Coerce a loosely-typed counter to a non-negative int; garbage becomes 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0
    if n != n or n < 0:
        return 0
    return int(n)


@dataclass(frozen=True)
class OffenseStats:
    passing_yards: int = 0
    passing_tds: int = 0
    interceptions: int = 0
    rushing_yards: int = 0
    rushing_tds: int = 0
    receptions: int = 0
    receiving_yards: int = 0
    receiving_tds: int = 0


@dataclass(frozen=True)
class KickingStats:
    fg_0_39: int = 0
    fg_40_49: int = 0
    fg_50_plus: int = 0
    fg_missed: int = 0
    xp_made: int = 0
    xp_missed: int = 0


@dataclass(frozen=True)
class DefenseStats:
    points_allowed: int = 0
    sacks: int = 0
    defensive_interceptions: int = 0
    fumble_recoveries: int = 0
    defensive_tds: int = 0

    def has_activity(self) -> bool:
        # points allowed alone is not activity: every stat line defaults it to 0
        return any((self.sacks, self.defensive_interceptions, self.fumble_recoveries, self.defensive_tds))


# storage documents use camelCase keys
_STAT_ALIASES = {
    'passingYards': 'passing_yards',
    'passingTDs': 'passing_tds',
    'rushingYards': 'rushing_yards',
    'rushingTDs': 'rushing_tds',
    'receivingYards': 'receiving_yards',
    'receivingTDs': 'receiving_tds',
    'fg0_39': 'fg_0_39',
    'fg40_49': 'fg_40_49',
    'fg50Plus': 'fg_50_plus',
    'fg_50p': 'fg_50_plus',
    'fgMissed': 'fg_missed',
    'xpMade': 'xp_made',
    'xpMissed': 'xp_missed',
    'pointsAllowed': 'points_allowed',
    'defensiveInterceptions': 'defensive_interceptions',
    'fumbleRecoveries': 'fumble_recoveries',
    'defensiveTDs': 'defensive_tds',
}
_STAT_CAMEL = {v: k for k, v in _STAT_ALIASES.items() if k not in ('fg_50p',)}


@dataclass
class StatLine:
    """One player's counters for one playoff week."""
    passing_yards: int = 0
    passing_tds: int = 0
    interceptions: int = 0
    rushing_yards: int = 0
    rushing_tds: int = 0
    receptions: int = 0
    receiving_yards: int = 0
    receiving_tds: int = 0
    fg_0_39: int = 0
    fg_40_49: int = 0
    fg_50_plus: int = 0
    fg_missed: int = 0
    xp_made: int = 0
    xp_missed: int = 0
    points_allowed: int = 0
    sacks: int = 0
    defensive_interceptions: int = 0
    fumble_recoveries: int = 0
    defensive_tds: int = 0

    def __post_init__(self):
        for f in fields(self):
            setattr(self, f.name, _count(getattr(self, f.name)))

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'StatLine':
        if not data:
            return cls()
        names = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _STAT_ALIASES.get(key, key)
            if name in names:
                values[name] = value
        return cls(**values)

    def to_dict(self, camel: bool = True) -> Dict[str, int]:
        out = {}
        for f in fields(self):
            key = _STAT_CAMEL.get(f.name, f.name) if camel else f.name
            out[key] = getattr(self, f.name)
        return out

    def offense(self) -> OffenseStats:
        return OffenseStats(**{f.name: getattr(self, f.name) for f in fields(OffenseStats)})

    def kicking(self) -> KickingStats:
        return KickingStats(**{f.name: getattr(self, f.name) for f in fields(KickingStats)})

    def defense(self) -> DefenseStats:
        return DefenseStats(**{f.name: getattr(self, f.name) for f in fields(DefenseStats)})

    def has_defensive_activity(self) -> bool:
        return self.defense().has_activity()

    def combine(self, other: 'StatLine') -> 'StatLine':
        return StatLine(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))


@dataclass
class Player:
    id: str
    name: str
    team: str
    position: str
    image_url: Optional[str] = None
    rank: Optional[int] = None
    injury_status: Optional[str] = None  # 'questionable' | 'out'

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], player_id: Optional[str] = None) -> 'Player':
        rank = data.get('rank')
        try:
            rank = int(rank) if rank is not None else None
        except (TypeError, ValueError):
            rank = None
        return cls(
            id=str(player_id or data.get('id')),
            name=data.get('name') or '',
            team=data.get('team') or '',
            position=data.get('position') or '',
            image_url=data.get('imageUrl') or data.get('image_url'),
            rank=rank,
            injury_status=data.get('injuryStatus') or data.get('injury_status'),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            'id': self.id,
            'name': self.name,
            'team': self.team,
            'position': self.position,
        }
        if self.image_url:
            out['imageUrl'] = self.image_url
        if self.rank is not None:
            out['rank'] = self.rank
        if self.injury_status:
            out['injuryStatus'] = self.injury_status
        return out


@dataclass
class WeeklyRoster:
    user_id: str
    week: int
    qb: Optional[str] = None
    rb1: Optional[str] = None
    rb2: Optional[str] = None
    wr1: Optional[str] = None
    wr2: Optional[str] = None
    wr3: Optional[str] = None
    te: Optional[str] = None
    dst: Optional[str] = None
    k: Optional[str] = None
    locked: bool = False
    total_points: float = 0.0

    def slots(self) -> Dict[str, Optional[str]]:
        return {slot: getattr(self, slot) for slot in ROSTER_SLOTS}

    def player_ids(self) -> List[str]:
        return [pid for pid in self.slots().values() if pid]

    def is_complete(self) -> bool:
        return len(self.player_ids()) == len(ROSTER_SLOTS)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'WeeklyRoster':
        roster = cls(
            user_id=str(data.get('userId') or data.get('user_id') or data.get('odId') or ''),
            week=int(data.get('week') or 0),
            locked=bool(data.get('locked', False)),
            total_points=float(data.get('totalPoints') or 0.0),
        )
        for slot in ROSTER_SLOTS:
            setattr(roster, slot, data.get(slot) or None)
        return roster

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {'userId': self.user_id, 'week': self.week}
        out.update(self.slots())
        out['locked'] = self.locked
        out['totalPoints'] = self.total_points
        return out


@dataclass
class UsedPlayers:
    user_id: str
    players: List[str] = field(default_factory=list)

    def __contains__(self, player_id: str) -> bool:
        return player_id in self.players

    def union(self, player_ids: Iterable[str]) -> 'UsedPlayers':
        merged = list(self.players)
        for pid in player_ids:
            if pid and pid not in merged:
                merged.append(pid)
        return UsedPlayers(user_id=self.user_id, players=merged)


@dataclass
class User:
    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None
    has_paid: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], uid: Optional[str] = None) -> 'User':
        return cls(
            uid=str(uid or data.get('uid')),
            display_name=data.get('displayName'),
            email=data.get('email'),
            photo_url=data.get('photoURL'),
            has_paid=bool(data.get('hasPaid', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'displayName': self.display_name,
            'email': self.email,
            'photoURL': self.photo_url,
            'hasPaid': self.has_paid,
        }


_RULE_ALIASES = {
    'passingYardsPerPoint': 'passing_yards_per_point',
    'passingTD': 'passing_td',
    'rushingYardsPerPoint': 'rushing_yards_per_point',
    'rushingTD': 'rushing_td',
    'receivingYardsPerPoint': 'receiving_yards_per_point',
    'receivingTD': 'receiving_td',
    'fg0_39': 'fg_0_39',
    'fg40_49': 'fg_40_49',
    'fg50Plus': 'fg_50_plus',
    'fgMissed': 'fg_missed',
    'extraPoint': 'extra_point',
    'xpMissed': 'xp_missed',
    'under7': 'under_7',
    'under14': 'under_14',
    'under21': 'under_21',
    'under28': 'under_28',
    'under35': 'under_35',
    'over35': 'over_35',
    'defensiveInterception': 'defensive_interception',
    'fumbleRecovery': 'fumble_recovery',
    'defensiveTD': 'defensive_td',
}
_RULE_CAMEL = {v: k for k, v in _RULE_ALIASES.items()}


@dataclass(frozen=True)
class ScoringRules:
    """Point coefficients. Defaults are the standard PPR table."""
    # passing
    passing_yards_per_point: float = 25
    passing_td: float = 4
    interception: float = -2
    # rushing
    rushing_yards_per_point: float = 10
    rushing_td: float = 6
    # receiving
    receiving_yards_per_point: float = 10
    receiving_td: float = 6
    reception: float = 1
    # kicking
    fg_0_39: float = 3
    fg_40_49: float = 4
    fg_50_plus: float = 5
    fg_missed: float = -1
    extra_point: float = 1
    xp_missed: float = -1
    # defense, points-allowed brackets
    shutout: float = 10
    under_7: float = 7
    under_14: float = 4
    under_21: float = 1
    under_28: float = 0
    under_35: float = -1
    over_35: float = -4
    sack: float = 1
    defensive_interception: float = 2
    fumble_recovery: float = 2
    defensive_td: float = 6

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'ScoringRules':
        """Build rules from a partial mapping; unknown keys (e.g. updatedAt) are ignored."""
        if not data:
            return cls()
        names = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = _RULE_ALIASES.get(key, key)
            if name not in names or isinstance(value, bool):
                continue
            try:
                values[name] = float(value)
            except (TypeError, ValueError):
                continue
        return cls(**values)

    def to_dict(self, camel: bool = True) -> Dict[str, float]:
        out = {}
        for f in fields(self):
            key = _RULE_CAMEL.get(f.name, f.name) if camel else f.name
            out[key] = getattr(self, f.name)
        return out


PPR_SCORING = ScoringRules()


@dataclass
class PlayoffConfig:
    week_name: str
    teams: List[str] = field(default_factory=list)
