import argparse
import json
import logging
import os
import time
from typing import List, Optional

from .config import ScoringRulesCache, load_settings, resolve_current_week
from .errors import ESPNAPIError, PoolError
from .espn_client import ESPNClient
from .ingest import PlayerSync, StatSync, SyncReport
from .models import ScoringRules, StatLine, week_name
from .poller import LiveStatsPoller
from .repository import PoolRepository
from .roster import (
    bulk_lock_week,
    enforce_deadline,
    repair_all_used_players,
    repair_used_players,
    reset_used_players,
    set_manual_roster,
)
from .scoring import ScoringEngine, validate_rules
from .standings import cumulative_standings, load_week_data, standings_frame, week_standings
from .store import JsonFileStore


def _load_json_arg(value: str):
    """Accept either a path to a JSON file or an inline JSON string."""
    if os.path.exists(value):
        with open(value, 'r', encoding='utf-8') as fh:
            return json.load(fh)
    return json.loads(value)


class Context:
    def __init__(self, args):
        self.settings = load_settings(args.config)
        if args.data_dir:
            self.settings.data_dir = args.data_dir
        self._repo: Optional[PoolRepository] = None

    @property
    def repo(self) -> PoolRepository:
        if self._repo is None:
            self._repo = PoolRepository(JsonFileStore(self.settings.store_path))
        return self._repo

    def client(self) -> ESPNClient:
        return ESPNClient(self.settings.espn_base_url, timeout=self.settings.http_timeout)

    def week(self, explicit: Optional[int]) -> int:
        if explicit:
            return explicit
        return resolve_current_week(self.repo.current_week_override(), self.settings.lock_times)


def print_sync_report(report: SyncReport) -> None:
    print(f"Week {week_name(report.week)}: {report.games_ingested}/{report.games_seen} games ingested, "
          f"{report.lines_written} stat lines written, {report.write_failures} failed writes")
    if report.unmatched:
        print('UNMATCHED')
        header = f"{'Name':28} {'Team':5} {'Kind':8}"
        print(header)
        print('-' * len(header))
        for cand in report.unmatched:
            print(f"{cand.name:28} {cand.team or '?':5} {cand.kind:8}")
    for err in report.errors:
        print(f'Error: {err}')


def cmd_score(args, ctx: Context) -> int:
    stats = StatLine.from_dict(_load_json_arg(args.stats))
    if args.rules:
        rules = ScoringRules.from_dict(_load_json_arg(args.rules))
    else:
        rules = ScoringRules()
    for warning in validate_rules(rules):
        print(f'Warning: {warning}')
    engine = ScoringEngine(rules)
    print(f'{engine.score(stats, args.position):.2f}')
    if args.explain:
        for line in engine.breakdown(stats, args.position):
            print(f'  {line}')
    return 0


def cmd_sync_stats(args, ctx: Context) -> int:
    week = ctx.week(args.week)
    try:
        report = StatSync(ctx.client(), ctx.repo, ctx.settings).sync_week(week)
    except ESPNAPIError as e:
        print(f'Stats sync failed: {e}')
        return 1
    print_sync_report(report)
    return 0


def cmd_sync_players(args, ctx: Context) -> int:
    week = ctx.week(args.week)
    if args.teams:
        teams = [t.strip().upper() for t in args.teams.split(',') if t.strip()]
    else:
        teams = ctx.repo.playoff_config(week_name(week)) or ctx.settings.playoff_teams
    if not teams:
        print('No teams given and no playoff config stored for this week')
        return 1
    report = PlayerSync(ctx.client(), ctx.repo).sync_teams(teams, week)
    print(f'Synced {report.players_saved} players for {len(teams)} teams ({report.kept_ids} existing ids kept)')
    if report.teams_failed:
        print('Failed teams: ' + ', '.join(report.teams_failed))
    return 0 if report.saved and not report.teams_failed else 1


def cmd_standings(args, ctx: Context) -> int:
    repo = ctx.repo
    week = ctx.week(args.week)
    cache = ScoringRulesCache(repo)
    rules = cache.get()
    users = repo.users()
    players = {p.id: p for p in repo.players()}
    if args.cumulative:
        data = {w: load_week_data(repo, w) for w in range(1, week + 1)}
        rows = cumulative_standings(data, users, players, rules, up_to_week=week)
    else:
        data = load_week_data(repo, week)
        rows = week_standings(week, users, data.rosters, data.stats, players, rules)
    cache.close()

    frame = standings_frame(rows)
    if args.csv:
        frame.to_csv(args.csv, index=False)
        print(f'Wrote {len(frame)} rows to {args.csv}')
        return 0
    header = f"{'#':>3} {'User':24} {'Points':>8}"
    print(header)
    print('-' * len(header))
    for row in rows:
        print(f"{row.rank:>3} {row.display_name[:24]:24} {row.total:8.2f}")
        if args.explain:
            for p in row.players:
                print(f"      {p.slot:4} {p.name[:24]:24} {p.points:7.2f}")
    return 0


def cmd_lock_week(args, ctx: Context) -> int:
    week = ctx.week(args.week)
    if args.if_deadline_passed:
        result = enforce_deadline(ctx.repo, ctx.settings, week)
        if result is None:
            print(f'Deadline for week {week} has not passed; nothing locked')
            return 0
    else:
        result = bulk_lock_week(ctx.repo, week)
    print(f'Locked {len(result.locked)}, already locked {len(result.already_locked)}, failed {len(result.failed)}')
    if result.ledger_failed:
        print('Used players not recorded for: ' + ', '.join(result.ledger_failed) + ' (run repair-used)')
    return 0 if not result.failed else 1


def cmd_repair_used(args, ctx: Context) -> int:
    if args.reset:
        if not args.user:
            print('--reset requires --user')
            return 1
        ok = reset_used_players(ctx.repo, args.user)
        print('Reset' if ok else 'Reset failed')
        return 0 if ok else 1
    if args.user:
        results = {args.user: repair_used_players(ctx.repo, args.user)}
    else:
        results = repair_all_used_players(ctx.repo)
    failed = 0
    for uid, players in results.items():
        if players is None:
            failed += 1
            print(f'{uid}: repair failed')
        else:
            print(f'{uid}: {len(players)} used players')
    return 1 if failed else 0


def cmd_manual_roster(args, ctx: Context) -> int:
    week = ctx.week(args.week)
    slots = _load_json_arg(args.slots)
    if not isinstance(slots, dict):
        print('--slots must be a JSON object of slot -> player id')
        return 1
    result = set_manual_roster(ctx.repo, args.user, week, slots)
    if not result.locked:
        print(f'Failed to save roster for {args.user}')
        return 1
    print(f'Roster saved and locked for {args.user} week {week_name(week)}')
    if not result.used_players_committed:
        print('Used players not recorded (run repair-used)')
    return 0


def cmd_poll(args, ctx: Context) -> int:
    week = ctx.week(args.week)
    interval = args.interval or ctx.settings.poll_interval
    sync = StatSync(ctx.client(), ctx.repo, ctx.settings)
    poller = LiveStatsPoller(
        sync, week, interval,
        on_report=print_sync_report,
        before_sync=lambda: enforce_deadline(ctx.repo, ctx.settings, week),
    )
    if args.once:
        return 0 if poller.tick() else 1
    print(f'Polling week {week_name(week)} every {interval:.0f}s (Ctrl-C to stop)')
    poller.start()
    try:
        while poller.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        poller.stop()
    return 0


def cmd_week(args, ctx: Context) -> int:
    if args.clear:
        ctx.repo.save_current_week_override(None)
    elif args.set:
        ctx.repo.save_current_week_override(args.set)
    override = ctx.repo.current_week_override()
    week = resolve_current_week(override, ctx.settings.lock_times)
    suffix = ' (override)' if override == week else ''
    print(f'{week} {week_name(week)}{suffix}')
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog='playoff-pool')
    parser.add_argument('--config', help='Path to a JSON settings file (lock times, date ranges, teams)')
    parser.add_argument('--data-dir', help='Directory holding the pool data file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log progress to stderr')
    sub = parser.add_subparsers(dest='cmd')

    sc = sub.add_parser('score', help='Score a single stat line')
    sc.add_argument('--stats', required=True, help='Stat line as JSON or a path to a JSON file')
    sc.add_argument('--position', help='QB, RB, WR, TE, K or DST')
    sc.add_argument('--rules', help='Scoring rules as JSON or a path (defaults to PPR)')
    sc.add_argument('--explain', action='store_true', help='Print the per-category breakdown')
    sc.set_defaults(func=cmd_score)

    ss = sub.add_parser('sync-stats', help='Ingest ESPN box scores for a week')
    ss.add_argument('--week', type=int, choices=[1, 2, 3, 4])
    ss.set_defaults(func=cmd_sync_stats)

    sp = sub.add_parser('sync-players', help='Refresh the player pool from ESPN team rosters')
    sp.add_argument('--week', type=int, choices=[1, 2, 3, 4])
    sp.add_argument('--teams', help='Comma-separated team codes alive this week')
    sp.set_defaults(func=cmd_sync_players)

    st = sub.add_parser('standings', help='Print weekly or cumulative standings')
    st.add_argument('--week', type=int, choices=[1, 2, 3, 4])
    st.add_argument('--cumulative', action='store_true', help='Sum all weeks up to --week')
    st.add_argument('--csv', help='Write the standings table to this CSV path instead of printing')
    st.add_argument('--explain', action='store_true', help='Show per-slot points (weekly only)')
    st.set_defaults(func=cmd_standings)

    lw = sub.add_parser('lock-week', help='Lock every roster for a week')
    lw.add_argument('--week', type=int, choices=[1, 2, 3, 4])
    lw.add_argument('--if-deadline-passed', action='store_true', help='Only lock once the week deadline is past')
    lw.set_defaults(func=cmd_lock_week)

    ru = sub.add_parser('repair-used', help='Rebuild used-player ledgers from locked rosters')
    ru.add_argument('--user', help='Only this user id')
    ru.add_argument('--reset', action='store_true', help='Clear the ledger instead of rebuilding it')
    ru.set_defaults(func=cmd_repair_used)

    mr = sub.add_parser('manual-roster', help='Save a locked roster for a user who missed the deadline')
    mr.add_argument('--user', required=True, help='User id')
    mr.add_argument('--week', type=int, choices=[1, 2, 3, 4])
    mr.add_argument('--slots', required=True, help='Slot -> player id mapping as JSON or a path to a JSON file')
    mr.set_defaults(func=cmd_manual_roster)

    po = sub.add_parser('poll', help='Keep re-syncing live stats on an interval')
    po.add_argument('--week', type=int, choices=[1, 2, 3, 4])
    po.add_argument('--interval', type=float, help='Seconds between passes (default from settings)')
    po.add_argument('--once', action='store_true', help='Run a single pass and exit')
    po.set_defaults(func=cmd_poll)

    wk = sub.add_parser('week', help='Show or override the current playoff week')
    wk.add_argument('--set', type=int, choices=[1, 2, 3, 4])
    wk.add_argument('--clear', action='store_true')
    wk.set_defaults(func=cmd_week)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    if not getattr(args, 'func', None):
        parser.print_help()
        return 0
    try:
        return args.func(args, Context(args))
    except PoolError as e:
        print(f'Error: {e}')
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
