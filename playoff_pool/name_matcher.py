from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from .models import Player, normalize_team

SUFFIXES = ('jr', 'sr', 'ii', 'iii', 'iv', 'v')


def normalize_name(name: str) -> str:
    if not name:
        return ''
    cleaned = ''.join(ch for ch in name.lower() if ch.isalpha() or ch.isspace())
    tokens = cleaned.split()
    if len(tokens) > 1 and tokens[-1] in SUFFIXES:
        tokens = tokens[:-1]
    return ' '.join(tokens)


def _first_last(norm: str) -> Tuple[str, str]:
    tokens = norm.split()
    if not tokens:
        return '', ''
    return tokens[0], tokens[-1]


def match_player(name: str, team: Optional[str], candidates: Sequence[Player], loose: bool = True) -> Optional[str]:
    """Resolve an external (name, team) pair to one of our player ids.

    Tiers, first hit wins: exact normalized name, first+last token, then last
    token alone when ``loose`` is set. Team must agree in every tier. Ties go
    to the earliest candidate.
    """
    norm = normalize_name(name)
    team_code = normalize_team(team)
    if not norm or not team_code:
        return None

    same_team = [(normalize_name(p.name), p) for p in candidates if normalize_team(p.team) == team_code]
    if not same_team:
        return None

    for cand_norm, p in same_team:
        if cand_norm == norm:
            return p.id

    first, last = _first_last(norm)
    for cand_norm, p in same_team:
        if _first_last(cand_norm) == (first, last):
            return p.id

    if loose:
        for cand_norm, p in same_team:
            if _first_last(cand_norm)[1] == last:
                return p.id
    return None


@dataclass
class Suggestion:
    player_id: str
    name: str
    score: float


def suggest_candidates(name: str, team: Optional[str], candidates: Iterable[Player], limit: int = 3) -> List[Suggestion]:
    """Closest same-team names for manual mapping of an unmatched record."""
    norm = normalize_name(name)
    team_code = normalize_team(team)
    if not norm:
        return []
    scored = []
    for p in candidates:
        if team_code and normalize_team(p.team) != team_code:
            continue
        score = fuzz.token_set_ratio(norm, normalize_name(p.name)) / 100.0
        scored.append(Suggestion(player_id=p.id, name=p.name, score=score))
    # sorted is stable so equal scores keep candidate order
    scored = sorted(scored, key=lambda s: s.score, reverse=True)
    return scored[:limit]
