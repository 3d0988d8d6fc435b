import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from .espn_client import BASE as ESPN_BASE
from .models import PLAYOFF_WEEKS, ScoringRules

log = logging.getLogger(__name__)

# 2025-26 postseason. Lock is 30 minutes before each round's first kickoff.
DEFAULT_LOCK_TIMES = {
    1: '2026-01-10T21:30:00+00:00',
    2: '2026-01-17T21:30:00+00:00',
    3: '2026-01-25T20:00:00+00:00',
    4: '2026-02-09T00:30:00+00:00',
}

# inclusive YYYYMMDD-YYYYMMDD scoreboard windows
DEFAULT_DATE_RANGES = {
    1: '20260110-20260114',
    2: '20260117-20260119',
    3: '20260124-20260126',
    4: '20260208-20260209',
}

DEFAULT_POLL_INTERVAL = 60.0


def parse_time(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _week_keys(raw: Mapping[Any, Any]) -> Dict[int, Any]:
    out = {}
    for k, v in raw.items():
        try:
            out[int(k)] = v
        except (TypeError, ValueError):
            log.warning('Ignoring non-numeric week key %r in config', k)
    return out


@dataclass
class Settings:
    data_dir: str = '.pool'
    season: str = '2025-2026'
    espn_base_url: str = ESPN_BASE
    poll_interval: float = DEFAULT_POLL_INTERVAL
    http_timeout: float = 10.0
    lock_times: Dict[int, datetime] = field(default_factory=lambda: {w: parse_time(t) for w, t in DEFAULT_LOCK_TIMES.items()})
    date_ranges: Dict[int, str] = field(default_factory=lambda: dict(DEFAULT_DATE_RANGES))
    playoff_teams: List[str] = field(default_factory=list)

    @property
    def store_path(self) -> str:
        return os.path.join(self.data_dir, 'pool.json')

    def deadline(self, week: int) -> Optional[datetime]:
        return self.lock_times.get(int(week))

    def date_range(self, week: int) -> Optional[str]:
        return self.date_ranges.get(int(week))

    def apply(self, overrides: Mapping[str, Any]) -> None:
        """Merge a JSON-style override mapping (camelCase keys) into these settings."""
        simple = {
            'dataDir': ('data_dir', str),
            'season': ('season', str),
            'espnBaseUrl': ('espn_base_url', str),
            'pollInterval': ('poll_interval', float),
            'httpTimeout': ('http_timeout', float),
        }
        for key, (attr, cast) in simple.items():
            if overrides.get(key) is not None:
                setattr(self, attr, cast(overrides[key]))
        if overrides.get('lockTimes'):
            for week, value in _week_keys(overrides['lockTimes']).items():
                self.lock_times[week] = parse_time(value)
        if overrides.get('dateRanges'):
            self.date_ranges.update({w: str(v) for w, v in _week_keys(overrides['dateRanges']).items()})
        if overrides.get('playoffTeams'):
            self.playoff_teams = [str(t).upper() for t in overrides['playoffTeams']]


ENV_VARS = {
    'POOL_DATA_DIR': 'dataDir',
    'POOL_SEASON': 'season',
    'ESPN_BASE_URL': 'espnBaseUrl',
    'POOL_POLL_INTERVAL': 'pollInterval',
    'POOL_HTTP_TIMEOUT': 'httpTimeout',
}


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Defaults, then the JSON file (``path`` or $POOL_CONFIG), then environment variables."""
    env = os.environ if env is None else env
    settings = Settings()
    path = path or env.get('POOL_CONFIG')
    if path:
        with open(path, 'r', encoding='utf-8') as fh:
            settings.apply(json.load(fh))
    settings.apply({key: env[var] for var, key in ENV_VARS.items() if env.get(var)})
    return settings


def resolve_current_week(override: Optional[int], lock_times: Mapping[int, datetime], now: Optional[datetime] = None) -> int:
    """The admin override when valid, else the latest week whose lock time has arrived."""
    if override is not None:
        if 1 <= int(override) <= len(PLAYOFF_WEEKS):
            return int(override)
        log.warning('Ignoring out-of-range current week override %r', override)
    now = now or datetime.now(timezone.utc)
    current = 1
    for week in sorted(lock_times):
        if now >= lock_times[week]:
            current = week
    return current


class ScoringRulesCache:
    """Process-wide scoring rules, refreshed whenever the stored rules change."""

    def __init__(self, repo):
        self.repo = repo
        self._rules: Optional[ScoringRules] = None
        self._lock = threading.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = repo.subscribe_scoring_rules(self._changed)

    def get(self) -> ScoringRules:
        with self._lock:
            if self._rules is None:
                self._rules = self.repo.scoring_rules()
            return self._rules

    def invalidate(self) -> None:
        with self._lock:
            self._rules = None

    def _changed(self, rules: ScoringRules) -> None:
        log.info('Scoring rules changed; cache refreshed')
        with self._lock:
            self._rules = rules

    def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
