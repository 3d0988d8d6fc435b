import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from .errors import ESPNAPIError

log = logging.getLogger(__name__)

BASE = 'https://site.api.espn.com/apis/site/v2/sports/football/nfl'

MAX_RETRIES = 3
RETRY_DELAY = 1.0

ESPN_TEAM_IDS = {
    'ARI': '22', 'ATL': '1', 'BAL': '33', 'BUF': '2', 'CAR': '29', 'CHI': '3', 'CIN': '4', 'CLE': '5',
    'DAL': '6', 'DEN': '7', 'DET': '8', 'GB': '9', 'HOU': '34', 'IND': '11', 'JAX': '30', 'KC': '12',
    'LAC': '24', 'LAR': '14', 'LV': '13', 'MIA': '15', 'MIN': '16', 'NE': '17', 'NO': '18', 'NYG': '19',
    'NYJ': '20', 'PHI': '21', 'PIT': '23', 'SEA': '26', 'SF': '25', 'TB': '27', 'TEN': '10', 'WAS': '28',
}
ESPN_ID_TO_TEAM = {v: k for k, v in ESPN_TEAM_IDS.items()}

# ESPN position ids for fantasy-relevant positions
ESPN_POSITIONS = {
    '1': 'QB',
    '2': 'RB',
    '3': 'WR',
    '4': 'TE',
    '5': 'K',
    '16': 'DST',
}


def team_logo_url(team: str) -> str:
    abbr = 'wsh' if team == 'WAS' else team.lower()
    return f'https://a.espncdn.com/i/teamlogos/nfl/500/{abbr}.png'


class ESPNClient:
    """Thin client for the public (unauthenticated) ESPN site API."""

    def __init__(self, base_url: str = BASE, timeout: float = 10, retries: int = MAX_RETRIES,
                 retry_delay: float = RETRY_DELAY, sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._sleep = sleep

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        last_error: Optional[ESPNAPIError] = None
        for attempt in range(self.retries):
            try:
                resp = requests.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                last_error = ESPNAPIError(f'GET {url} failed: {e}')
            else:
                if resp.ok:
                    try:
                        return resp.json()
                    except ValueError:
                        # maintenance pages come back as 200 html
                        last_error = ESPNAPIError(f'GET {url} returned a non-JSON body', resp.status_code)
                elif 400 <= resp.status_code < 500:
                    # client errors will not get better on retry
                    raise ESPNAPIError(f'GET {url} failed: {resp.status_code} {resp.reason}', resp.status_code)
                else:
                    last_error = ESPNAPIError(f'GET {url} failed: {resp.status_code}', resp.status_code)
            if attempt < self.retries - 1:
                delay = self.retry_delay * (2 ** attempt)
                log.warning('ESPN retry %d/%d in %.1fs: %s', attempt + 1, self.retries, delay, last_error)
                self._sleep(delay)
        raise last_error or ESPNAPIError(f'GET {url} failed')

    def _get_object(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = self._get(path, params=params)
        if not isinstance(data, dict):
            raise ESPNAPIError(f'GET {path} returned {type(data).__name__}, expected an object')
        return data

    def get_scoreboard(self, dates: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return the scoreboard events, optionally limited to a YYYYMMDD-YYYYMMDD range."""
        params = {'dates': dates} if dates else None
        events = self._get_object('/scoreboard', params=params).get('events')
        return events if isinstance(events, list) else []

    def get_summary(self, event_id: str) -> Dict[str, Any]:
        return self._get_object('/summary', params={'event': event_id})

    def get_team_roster(self, team: str) -> Dict[str, Any]:
        team_id = ESPN_TEAM_IDS.get(team)
        if not team_id:
            raise ESPNAPIError(f'No ESPN team id for {team!r}')
        return self._get_object(f'/teams/{team_id}/roster')
