from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .models import ScoringRules, StatLine, PPR_SCORING

PASSING = 'passing'
RUSHING = 'rushing'
RECEIVING = 'receiving'
KICKING = 'kicking'
DEFENSE = 'defense'

CATEGORY_ORDER = (PASSING, RUSHING, RECEIVING, KICKING, DEFENSE)
_OFFENSE = (PASSING, RUSHING, RECEIVING)

POSITION_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    'QB': _OFFENSE,
    'RB': _OFFENSE,
    'WR': _OFFENSE,
    'TE': _OFFENSE,
    'K': (KICKING,),
    'DST': (DEFENSE,),
}

StatsLike = Union[StatLine, Mapping[str, Any], None]


def as_stat_line(stats: StatsLike) -> StatLine:
    if isinstance(stats, StatLine):
        return stats
    return StatLine.from_dict(stats)


def categories_for(stats: StatLine, position: Optional[str] = None) -> Tuple[str, ...]:
    """Stat categories that count toward a player's score.

    Known positions map straight to their categories. With no position the
    defense block only counts when the line shows real defensive activity, so
    offensive players with zero-defaulted defense fields never pick up a
    shutout bonus. Unrecognised positions never get defense.
    """
    if not position:
        cats = _OFFENSE + (KICKING,)
        if stats.has_defensive_activity():
            cats = cats + (DEFENSE,)
        return cats
    pos = position.strip().upper()
    if pos == 'D/ST':
        pos = 'DST'
    return POSITION_CATEGORIES.get(pos, _OFFENSE + (KICKING,))


def _per(amount: float, yards_per_point: float) -> float:
    if not yards_per_point or yards_per_point <= 0:
        return 0.0
    return amount / yards_per_point


def points_allowed_score(points_allowed: int, rules: ScoringRules) -> float:
    if points_allowed <= 0:
        return rules.shutout
    if points_allowed <= 6:
        return rules.under_7
    if points_allowed <= 13:
        return rules.under_14
    if points_allowed <= 20:
        return rules.under_21
    if points_allowed <= 27:
        return rules.under_28
    if points_allowed <= 34:
        return rules.under_35
    return rules.over_35


def points_allowed_label(points_allowed: int) -> str:
    if points_allowed <= 0:
        return 'Shutout'
    for upper, label in ((6, '1-6'), (13, '7-13'), (20, '14-20'), (27, '21-27'), (34, '28-34')):
        if points_allowed <= upper:
            return label
    return '35+'


def _passing(s: StatLine, r: ScoringRules) -> float:
    return _per(s.passing_yards, r.passing_yards_per_point) + s.passing_tds * r.passing_td + s.interceptions * r.interception


def _rushing(s: StatLine, r: ScoringRules) -> float:
    return _per(s.rushing_yards, r.rushing_yards_per_point) + s.rushing_tds * r.rushing_td


def _receiving(s: StatLine, r: ScoringRules) -> float:
    return (_per(s.receiving_yards, r.receiving_yards_per_point) + s.receiving_tds * r.receiving_td
            + s.receptions * r.reception)


def _kicking(s: StatLine, r: ScoringRules) -> float:
    return (s.fg_0_39 * r.fg_0_39 + s.fg_40_49 * r.fg_40_49 + s.fg_50_plus * r.fg_50_plus
            + s.fg_missed * r.fg_missed + s.xp_made * r.extra_point + s.xp_missed * r.xp_missed)


def _defense(s: StatLine, r: ScoringRules) -> float:
    return (points_allowed_score(s.points_allowed, r) + s.sacks * r.sack
            + s.defensive_interceptions * r.defensive_interception
            + s.fumble_recoveries * r.fumble_recovery + s.defensive_tds * r.defensive_td)


_SCORERS: Dict[str, Callable[[StatLine, ScoringRules], float]] = {
    PASSING: _passing,
    RUSHING: _rushing,
    RECEIVING: _receiving,
    KICKING: _kicking,
    DEFENSE: _defense,
}


def round_points(value: float) -> float:
    """Round half-up to two places using the float's shortest decimal form."""
    return float(Decimal(repr(float(value))).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def calculate_points(stats: StatsLike, rules: Optional[ScoringRules] = None, position: Optional[str] = None) -> float:
    line = as_stat_line(stats)
    rules = rules or PPR_SCORING
    total = 0.0
    for cat in categories_for(line, position):
        total += _SCORERS[cat](line, rules)
    return round_points(total)


def _fmt(value: float) -> str:
    return f'{value:.2f}'.rstrip('0').rstrip('.')


def score_breakdown(stats: StatsLike, rules: Optional[ScoringRules] = None, position: Optional[str] = None) -> List[str]:
    """Human-readable line items for the non-zero categories of a stat line.

    For tooltips and recaps only; calculate_points is the authoritative score.
    """
    s = as_stat_line(stats)
    r = rules or PPR_SCORING
    cats = categories_for(s, position)
    items: List[Tuple[str, str, float, int]] = []
    if PASSING in cats:
        items += [
            ('Passing', 'yds', _per(s.passing_yards, r.passing_yards_per_point), s.passing_yards),
            ('Passing TDs', '', s.passing_tds * r.passing_td, s.passing_tds),
            ('INTs', '', s.interceptions * r.interception, s.interceptions),
        ]
    if RUSHING in cats:
        items += [
            ('Rushing', 'yds', _per(s.rushing_yards, r.rushing_yards_per_point), s.rushing_yards),
            ('Rushing TDs', '', s.rushing_tds * r.rushing_td, s.rushing_tds),
        ]
    if RECEIVING in cats:
        items += [
            ('Receptions', '', s.receptions * r.reception, s.receptions),
            ('Receiving', 'yds', _per(s.receiving_yards, r.receiving_yards_per_point), s.receiving_yards),
            ('Receiving TDs', '', s.receiving_tds * r.receiving_td, s.receiving_tds),
        ]
    if KICKING in cats:
        items += [
            ('FG 0-39', '', s.fg_0_39 * r.fg_0_39, s.fg_0_39),
            ('FG 40-49', '', s.fg_40_49 * r.fg_40_49, s.fg_40_49),
            ('FG 50+', '', s.fg_50_plus * r.fg_50_plus, s.fg_50_plus),
            ('FG Missed', '', s.fg_missed * r.fg_missed, s.fg_missed),
            ('XP Made', '', s.xp_made * r.extra_point, s.xp_made),
            ('XP Missed', '', s.xp_missed * r.xp_missed, s.xp_missed),
        ]

    lines = []
    for label, unit, pts, raw in items:
        if not raw:
            continue
        amount = f'{raw} {unit}' if unit else str(raw)
        lines.append(f'{label}: {amount} ({_fmt(pts)} pts)')

    if DEFENSE in cats:
        pa_pts = points_allowed_score(s.points_allowed, r)
        if pa_pts:
            lines.append(f'Points Allowed: {s.points_allowed} [{points_allowed_label(s.points_allowed)}] ({_fmt(pa_pts)} pts)')
        for label, pts, raw in (
            ('Sacks', s.sacks * r.sack, s.sacks),
            ('Def INTs', s.defensive_interceptions * r.defensive_interception, s.defensive_interceptions),
            ('Fumble Recoveries', s.fumble_recoveries * r.fumble_recovery, s.fumble_recoveries),
            ('Def TDs', s.defensive_tds * r.defensive_td, s.defensive_tds),
        ):
            if raw:
                lines.append(f'{label}: {raw} ({_fmt(pts)} pts)')
    return lines


def validate_rules(rules: ScoringRules) -> List[str]:
    """Warnings for rule sets an admin probably did not intend."""
    warnings = []
    for name in ('passing_yards_per_point', 'rushing_yards_per_point', 'receiving_yards_per_point'):
        if getattr(rules, name) <= 0:
            warnings.append(f'{name} must be positive; yardage in that category will score 0')
    brackets = ('shutout', 'under_7', 'under_14', 'under_21', 'under_28', 'under_35', 'over_35')
    for better, worse in zip(brackets, brackets[1:]):
        if getattr(rules, worse) > getattr(rules, better):
            warnings.append(f'{worse} ({getattr(rules, worse)}) is worth more than {better} ({getattr(rules, better)})')
    return warnings


class ScoringEngine:
    def __init__(self, rules: Optional[ScoringRules] = None):
        self.rules = rules or PPR_SCORING

    def score(self, stats: StatsLike, position: Optional[str] = None) -> float:
        return calculate_points(stats, self.rules, position)

    def breakdown(self, stats: StatsLike, position: Optional[str] = None) -> List[str]:
        return score_breakdown(stats, self.rules, position)

    def score_players(self, stats_by_player: Mapping[str, StatsLike], positions: Optional[Mapping[str, str]] = None) -> Dict[str, float]:
        positions = positions or {}
        return {pid: self.score(st, positions.get(pid)) for pid, st in stats_by_player.items()}
