"""Turn ESPN box scores into per-player week stat lines.

ESPN's summary payload is unofficial and changes without notice, so every
lookup here tolerates missing or malformed fields and falls back to zero.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ESPNAPIError
from .espn_client import ESPN_POSITIONS, ESPNClient, team_logo_url
from .models import POSITIONS, Player, StatLine, normalize_team, week_name
from .name_matcher import match_player

log = logging.getLogger(__name__)

LIVE_STATES = ('in', 'post')

OFFENSE_CATEGORIES = {
    'passing': (('passingYards', 'passing_yards'), ('passingTouchdowns', 'passing_tds'), ('interceptions', 'interceptions')),
    'rushing': (('rushingYards', 'rushing_yards'), ('rushingTouchdowns', 'rushing_tds')),
    'receiving': (('receptions', 'receptions'), ('receivingYards', 'receiving_yards'), ('receivingTouchdowns', 'receiving_tds')),
}

FG_PATTERNS = (
    re.compile(r'(\d+)\s+Yd\s+Field\s+Goal', re.I),
    re.compile(r'(\d+)-yard\s+field\s+goal', re.I),
    re.compile(r'FG\s+(\d+)|(\d+)\s+FG', re.I),
)
_ANY_DISTANCE = re.compile(r'\b([2-5][0-9])\b')
_KICKER_NAME = re.compile(r'^(.+?)\s+\d+')


def _dig(obj: Any, *keys: Any) -> Any:
    for key in keys:
        if isinstance(obj, dict):
            obj = obj.get(key)
        elif isinstance(obj, list) and isinstance(key, int):
            obj = obj[key] if -len(obj) <= key < len(obj) else None
        else:
            return None
    return obj


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _to_int(value: Any) -> int:
    """Leading integer of a stat token; anything unparseable or negative is 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value) if value == value and value > 0 else 0
    m = re.match(r'\s*(\d+)', str(value))
    return int(m.group(1)) if m else 0


def _pair(value: Any) -> Tuple[int, int]:
    """Split a 'made/attempts' token."""
    if not isinstance(value, str) or '/' not in value:
        return 0, 0
    made, _, att = value.partition('/')
    return _to_int(made), _to_int(att)


def _stat(keys: Sequence[str], stats: Sequence[Any], key: str) -> int:
    if key not in keys:
        return 0
    idx = keys.index(key)
    if idx >= len(stats):
        return 0
    value = stats[idx]
    # compound tokens like completions/attempts are not single counters
    if isinstance(value, str) and '/' in value:
        return 0
    return _to_int(value)


def _raw(keys: Sequence[str], stats: Sequence[Any], key: str) -> Any:
    if key in keys:
        idx = keys.index(key)
        if idx < len(stats):
            return stats[idx]
    return None


def parse_fg_distance(text: str) -> Optional[int]:
    if not text:
        return None
    for pattern in FG_PATTERNS:
        m = pattern.search(text)
        if m:
            return int(next(g for g in m.groups() if g))
    m = _ANY_DISTANCE.search(text)
    if m and 20 <= int(m.group(1)) <= 60:
        return int(m.group(1))
    log.warning('Could not parse FG distance from %r', text)
    return None


@dataclass
class FieldGoalPlay:
    kicker_name: str
    team: Optional[str]
    distance: int


@dataclass
class OffensiveLine:
    espn_id: str
    name: str
    team: Optional[str]
    position: str = ''
    headshot: Optional[str] = None
    stats: StatLine = field(default_factory=StatLine)


@dataclass
class KickerLine:
    espn_id: str
    name: str
    team: Optional[str]
    last_name: str = ''
    headshot: Optional[str] = None
    fg_made: int = 0
    fg_attempts: int = 0
    xp_made: int = 0
    xp_attempts: int = 0
    long_fg: int = 0
    fg_0_39: int = 0
    fg_40_49: int = 0
    fg_50_plus: int = 0

    def stat_line(self) -> StatLine:
        return StatLine(
            fg_0_39=self.fg_0_39,
            fg_40_49=self.fg_40_49,
            fg_50_plus=self.fg_50_plus,
            fg_missed=max(0, self.fg_attempts - self.fg_made),
            xp_made=self.xp_made,
            xp_missed=max(0, self.xp_attempts - self.xp_made),
        )


@dataclass
class DefenseLine:
    team: str
    points_allowed: int = 0
    sacks: int = 0
    interceptions: int = 0
    fumble_recoveries: int = 0
    defensive_tds: int = 0

    def stat_line(self) -> StatLine:
        return StatLine(
            points_allowed=self.points_allowed,
            sacks=self.sacks,
            defensive_interceptions=self.interceptions,
            fumble_recoveries=self.fumble_recoveries,
            defensive_tds=self.defensive_tds,
        )


@dataclass
class BoxScore:
    game_id: str
    state: str = 'pre'
    completed: bool = False
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    home_score: int = 0
    away_score: int = 0
    players: List[OffensiveLine] = field(default_factory=list)
    kickers: List[KickerLine] = field(default_factory=list)
    defenses: List[DefenseLine] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f'{self.away_team} @ {self.home_team}'

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES


def _team_of(block: Any) -> Optional[str]:
    abbr = _dig(block, 'team', 'abbreviation')
    team = normalize_team(abbr)
    if abbr and not team:
        log.warning('Unknown team abbreviation %r', abbr)
    return team


def _field_goal_plays(summary: Dict[str, Any]) -> List[FieldGoalPlay]:
    plays = []
    for play in _list(summary.get('scoringPlays')):
        if _dig(play, 'scoringType', 'name') != 'field-goal':
            continue
        text = _dig(play, 'text')
        if not isinstance(text, str):
            continue
        distance = parse_fg_distance(text)
        if distance is None:
            continue
        m = _KICKER_NAME.match(text)
        plays.append(FieldGoalPlay(kicker_name=m.group(1).strip() if m else '', team=_team_of(play), distance=distance))
    return plays


def _plays_for(kicker: KickerLine, plays: List[FieldGoalPlay], taken: set) -> List[FieldGoalPlay]:
    name = kicker.name.lower()
    last = kicker.last_name.lower()
    out = []
    for i, play in enumerate(plays):
        if i in taken or (play.team and kicker.team and play.team != kicker.team):
            continue
        who = play.kicker_name.lower()
        if who and (who == name or (last and last in who)):
            taken.add(i)
            out.append(play)
    return out


def _bucket_field_goals(kicker: KickerLine, plays: List[FieldGoalPlay]) -> None:
    buckets = [0, 0, 0]  # 0-39, 40-49, 50+
    for play in plays:
        if play.distance >= 50:
            buckets[2] += 1
        elif play.distance >= 40:
            buckets[1] += 1
        else:
            buckets[0] += 1
    # scoring plays may disagree with the box score; the made count wins
    excess = sum(buckets) - kicker.fg_made
    for i in (2, 1, 0):
        if excess <= 0:
            break
        cut = min(excess, buckets[i])
        buckets[i] -= cut
        excess -= cut
    if excess < 0:
        buckets[0] += -excess
    kicker.fg_0_39, kicker.fg_40_49, kicker.fg_50_plus = buckets


def _parse_kicker(team: Optional[str], keys: List[str], entry: Any) -> Optional[KickerLine]:
    athlete = _dict(_dig(entry, 'athlete'))
    stats = _list(_dig(entry, 'stats'))
    name = athlete.get('displayName') or ''
    if not name:
        return None
    fg_made, fg_att = _pair(_raw(keys, stats, 'fieldGoalsMade/fieldGoalAttempts'))
    xp_made, xp_att = _pair(_raw(keys, stats, 'extraPointsMade/extraPointAttempts'))
    return KickerLine(
        espn_id=str(athlete.get('id') or ''),
        name=name,
        team=team,
        last_name=athlete.get('lastName') or name.split()[-1],
        headshot=_dig(athlete, 'headshot', 'href'),
        fg_made=fg_made,
        fg_attempts=fg_att,
        xp_made=xp_made,
        xp_attempts=xp_att,
        long_fg=_stat(keys, stats, 'longFieldGoalMade'),
    )


@dataclass
class _TeamTotals:
    ints_thrown: int = 0
    fumbles_lost: int = 0
    times_sacked: int = 0
    sacks: Optional[int] = None
    defensive_tds: int = 0


def _team_totals(block: Any) -> _TeamTotals:
    totals = _TeamTotals()
    for stat in _list(_dig(block, 'statistics')):
        if not isinstance(stat, dict):
            continue
        label = str(stat.get('label') or stat.get('name') or '').lower()
        value = stat.get('displayValue')
        if 'interceptions thrown' in label:
            totals.ints_thrown = _to_int(value)
        elif 'fumbles lost' in label:
            totals.fumbles_lost = _to_int(value)
        elif 'sacks-yards lost' in label:
            # "2-14": sacked twice for 14 yards
            totals.times_sacked = _to_int(value)
        elif label == 'sacks' or stat.get('name') == 'sacks':
            totals.sacks = _to_int(value)
        elif 'defensive' in label and 'td' in label:
            totals.defensive_tds = _to_int(value)
    return totals


def parse_box_score(summary: Dict[str, Any], game_id: Optional[str] = None) -> BoxScore:
    """Parse an ESPN ``summary`` payload. Never raises on malformed input."""
    summary = _dict(summary)
    competition = _dict(_dig(summary, 'header', 'competitions', 0))
    competitors = _list(competition.get('competitors'))
    home = next((c for c in competitors if _dig(c, 'homeAway') == 'home'), {})
    away = next((c for c in competitors if _dig(c, 'homeAway') == 'away'), {})
    status = _dict(_dig(competition, 'status', 'type'))

    box = BoxScore(
        game_id=str(game_id or _dig(summary, 'header', 'id') or competition.get('id') or ''),
        state=str(status.get('state') or 'pre'),
        completed=bool(status.get('completed')),
        home_team=_team_of(home),
        away_team=_team_of(away),
        home_score=_to_int(_dig(home, 'score')),
        away_score=_to_int(_dig(away, 'score')),
    )

    by_id: Dict[str, OffensiveLine] = {}
    for team_block in _list(_dig(summary, 'boxscore', 'players')):
        team = _team_of(team_block)
        for category in _list(_dig(team_block, 'statistics')):
            cat_name = str(_dig(category, 'name') or '').lower()
            keys = [k for k in _list(_dig(category, 'keys')) if isinstance(k, str)]
            athletes = _list(_dig(category, 'athletes'))
            if cat_name == 'kicking':
                for entry in athletes:
                    kicker = _parse_kicker(team, keys, entry)
                    if kicker:
                        box.kickers.append(kicker)
                continue
            mapping = OFFENSE_CATEGORIES.get(cat_name)
            if not mapping:
                continue
            for entry in athletes:
                athlete = _dict(_dig(entry, 'athlete'))
                espn_id = str(athlete.get('id') or '')
                name = athlete.get('displayName') or ''
                if not espn_id or not name:
                    continue
                stats = _list(_dig(entry, 'stats'))
                line = by_id.get(espn_id)
                if line is None:
                    line = OffensiveLine(
                        espn_id=espn_id,
                        name=name,
                        team=team,
                        position=_dig(athlete, 'position', 'abbreviation') or '',
                        headshot=_dig(athlete, 'headshot', 'href'),
                    )
                    by_id[espn_id] = line
                    box.players.append(line)
                for key, attr in mapping:
                    setattr(line.stats, attr, getattr(line.stats, attr) + _stat(keys, stats, key))

    plays = _field_goal_plays(summary)
    taken: set = set()
    for kicker in box.kickers:
        _bucket_field_goals(kicker, _plays_for(kicker, plays, taken))

    team_blocks = []
    for block in _list(_dig(summary, 'boxscore', 'teams')):
        team = _team_of(block)
        if team:
            team_blocks.append((team, _team_totals(block)))
    totals = dict(team_blocks)
    for team, own in team_blocks:
        if team == box.home_team:
            opponent, allowed = box.away_team, box.away_score
        else:
            opponent, allowed = box.home_team, box.home_score
        opp = totals.get(opponent) or _TeamTotals()
        box.defenses.append(DefenseLine(
            team=team,
            points_allowed=allowed,
            sacks=own.sacks if own.sacks is not None else opp.times_sacked,
            interceptions=opp.ints_thrown,
            fumble_recoveries=opp.fumbles_lost,
            defensive_tds=own.defensive_tds,
        ))
    return box


@dataclass
class StatLineCandidate:
    kind: str  # 'offense' | 'kicker' | 'defense'
    name: str
    team: Optional[str]
    stats: StatLine
    player_id: Optional[str] = None
    external_id: Optional[str] = None


def _by_position(candidates: Iterable[Player], *positions: str) -> List[Player]:
    return [p for p in candidates if p.position in positions]


def normalize_box_score(box: BoxScore, candidates: Sequence[Player]) -> List[StatLineCandidate]:
    """Tag every parsed line with the internal player id it belongs to, if any."""
    skill = _by_position(candidates, 'QB', 'RB', 'WR', 'TE')
    kickers = _by_position(candidates, 'K')
    defenses = _by_position(candidates, 'DST')
    out: List[StatLineCandidate] = []

    for line in box.players:
        pid = match_player(line.name, line.team, skill, loose=True)
        out.append(StatLineCandidate('offense', line.name, line.team, line.stats, pid, line.espn_id))

    for k in box.kickers:
        pid = match_player(k.name, k.team, kickers, loose=True)
        if pid is None:
            team_kickers = [p for p in kickers if p.team == k.team]
            if len(team_kickers) == 1:
                pid = team_kickers[0].id
        out.append(StatLineCandidate('kicker', k.name, k.team, k.stat_line(), pid, k.espn_id))

    for d in box.defenses:
        pid = next((p.id for p in defenses if p.team == d.team), None)
        out.append(StatLineCandidate('defense', f'{d.team} Defense', d.team, d.stat_line(), pid))
    return out


@dataclass
class SyncReport:
    week: int
    games_seen: int = 0
    games_ingested: int = 0
    lines_written: int = 0
    write_failures: int = 0
    unmatched: List[StatLineCandidate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _event_state(event: Dict[str, Any]) -> str:
    return str(_dig(event, 'status', 'type', 'state') or _dig(event, 'competitions', 0, 'status', 'type', 'state') or 'pre')


class StatSync:
    """Fetch a playoff week's games and overwrite the stored stat lines."""

    def __init__(self, client: ESPNClient, repo, settings):
        self.client = client
        self.repo = repo
        self.settings = settings

    def sync_week(self, week: int) -> SyncReport:
        name = week_name(week)
        report = SyncReport(week=week)
        events = self.client.get_scoreboard(self.settings.date_range(week))
        candidates = self.repo.players()
        lines: Dict[str, StatLine] = {}

        for event in events:
            report.games_seen += 1
            if not isinstance(event, dict) or _event_state(event) not in LIVE_STATES:
                continue
            event_id = str(event.get('id') or '')
            try:
                summary = self.client.get_summary(event_id)
            except ESPNAPIError as e:
                log.error('Box score fetch failed for game %s: %s', event_id, e)
                report.errors.append(f'{event_id}: {e}')
                continue
            box = parse_box_score(summary, event_id)
            if not box.is_live:
                continue
            report.games_ingested += 1
            for cand in normalize_box_score(box, candidates):
                if cand.player_id is None:
                    if not cand.stats.is_empty():
                        report.unmatched.append(cand)
                    continue
                prior = lines.get(cand.player_id)
                lines[cand.player_id] = prior.combine(cand.stats) if prior else cand.stats

        for pid, line in lines.items():
            if self.repo.save_stat_line(name, pid, line):
                report.lines_written += 1
            else:
                report.write_failures += 1
        log.info('Week %s sync: %d/%d games, %d lines written, %d unmatched', name, report.games_ingested,
                 report.games_seen, report.lines_written, len(report.unmatched))
        return report


def _injury_status(athlete: Dict[str, Any]) -> Optional[str]:
    for injury in _list(athlete.get('injuries')):
        status = str(_dig(injury, 'status') or '').lower()
        if status == 'questionable' or status == 'doubtful':
            return 'questionable'
        if status in ('out', 'injured reserve', 'ir'):
            return 'out'
    return None


def parse_team_roster(payload: Dict[str, Any], team: str) -> List[Player]:
    players = []
    for group in _list(_dig(payload, 'athletes')):
        for athlete in _list(_dig(group, 'items')):
            if not isinstance(athlete, dict):
                continue
            position = ESPN_POSITIONS.get(str(_dig(athlete, 'position', 'id') or ''))
            if position is None:
                abbr = _dig(athlete, 'position', 'abbreviation')
                position = abbr if abbr in POSITIONS else None
            if position is None or position == 'DST':
                continue
            name = athlete.get('fullName') or athlete.get('displayName')
            if not name or not athlete.get('id'):
                continue
            image = _dig(athlete, 'headshot', 'href')
            if not image and position == 'K':
                image = team_logo_url(team)
            players.append(Player(
                id=str(athlete['id']),
                name=name,
                team=team,
                position=position,
                image_url=image,
                injury_status=_injury_status(athlete),
            ))
    return players


@dataclass
class PlayerSyncReport:
    week: int
    players_saved: int = 0
    kept_ids: int = 0
    teams_failed: List[str] = field(default_factory=list)
    saved: bool = True


class PlayerSync:
    """Refresh the player pool from ESPN team rosters for the teams alive this week."""

    def __init__(self, client: ESPNClient, repo):
        self.client = client
        self.repo = repo

    def sync_teams(self, teams: Iterable[str], week: int) -> PlayerSyncReport:
        report = PlayerSyncReport(week=week)
        teams = [t for t in (normalize_team(t) for t in teams) if t]
        existing = self.repo.players()
        synced: List[Player] = []
        for team in teams:
            try:
                payload = self.client.get_team_roster(team)
            except ESPNAPIError as e:
                log.error('Roster fetch failed for %s: %s', team, e)
                report.teams_failed.append(team)
                continue
            for p in parse_team_roster(payload, team):
                same_pos = [e for e in existing if e.position == p.position]
                known = match_player(p.name, p.team, same_pos, loose=False)
                if known:
                    # keep the stored id so rosters and ledgers stay valid
                    p.id = known
                    report.kept_ids += 1
                synced.append(p)
            synced.append(Player(id=f'DST-{team}', name=f'{team} Defense', team=team, position='DST',
                                 image_url=team_logo_url(team)))

        report.saved = self.repo.save_players(synced) and self.repo.save_playoff_config(week_name(week), teams)
        report.players_saved = len(synced) if report.saved else 0
        log.info('Player sync week %d: %d players across %d teams (%d failed)', week, len(synced),
                 len(teams), len(report.teams_failed))
        return report
