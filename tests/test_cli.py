import json
import os

import pytest

from playoff_pool.cli import main
from playoff_pool.models import StatLine, User, WeeklyRoster
from playoff_pool.repository import PoolRepository
from playoff_pool.store import JsonFileStore

LINEUP = {
    'qb': 'qb1', 'rb1': 'rb1', 'rb2': 'rb2', 'wr1': 'wr1', 'wr2': 'wr2',
    'wr3': 'wr3', 'te': 'te1', 'dst': 'DST-KC', 'k': 'k1',
}


@pytest.fixture
def data_dir(tmp_path):
    repo = PoolRepository(JsonFileStore(str(tmp_path / 'pool.json')))
    repo.save_user(User('u1', 'Ann'))
    repo.save_user(User('u2', 'Bob'))
    repo.save_roster(WeeklyRoster(user_id='u1', week=1, **LINEUP))
    repo.save_roster(WeeklyRoster(user_id='u2', week=1, qb='qb2'))
    repo.save_stat_line('wildcard', 'qb1', StatLine(passing_yards=300, passing_tds=3, interceptions=1))
    repo.save_stat_line('wildcard', 'qb2', StatLine(passing_yards=250))
    return str(tmp_path)


def test_score_inline_json(capsys):
    rc = main(['score', '--stats', '{"passingYards": 300, "passingTDs": 3, "interceptions": 1}'])
    assert rc == 0
    assert capsys.readouterr().out.strip() == '22.00'


def test_score_explain_and_rules_file(tmp_path, capsys):
    rules = tmp_path / 'rules.json'
    rules.write_text(json.dumps({'reception': 0.5}))
    rc = main(['score', '--stats', '{"receptions": 4, "receivingYards": 40}',
               '--position', 'WR', '--rules', str(rules), '--explain'])
    assert rc == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == '6.00'
    assert any(line.strip().startswith('Receptions: 4') for line in out)


def test_score_warns_on_bad_rules(capsys):
    main(['score', '--stats', '{}', '--rules', '{"passingYardsPerPoint": 0}'])
    out = capsys.readouterr().out
    assert out.startswith('Warning:')
    assert out.strip().endswith('0.00')


def test_lock_week_then_standings(data_dir, capsys):
    rc = main(['--data-dir', data_dir, 'lock-week', '--week', '1'])
    out = capsys.readouterr().out
    assert rc == 1
    assert 'Locked 1, already locked 0, failed 1' in out

    repo = PoolRepository(JsonFileStore(os.path.join(data_dir, 'pool.json')))
    assert repo.get_roster('u1', 1).locked
    assert not repo.get_roster('u2', 1).locked
    assert 'qb1' in repo.get_used_players('u1')

    rc = main(['--data-dir', data_dir, 'standings', '--week', '1'])
    lines = capsys.readouterr().out.splitlines()
    assert rc == 0
    assert lines[2].split() == ['1', 'Ann', '22.00']
    assert lines[3].split() == ['2', 'Bob', '10.00']


def test_standings_csv(data_dir, tmp_path, capsys):
    path = str(tmp_path / 'out.csv')
    rc = main(['--data-dir', data_dir, 'standings', '--week', '1', '--cumulative', '--csv', path])
    assert rc == 0
    with open(path, encoding='utf-8') as fh:
        header = fh.readline().strip()
    assert header == 'rank,user,total,wildcard'


def test_week_override(data_dir, capsys):
    main(['--data-dir', data_dir, 'week', '--set', '2'])
    assert capsys.readouterr().out.strip() == '2 divisional (override)'
    main(['--data-dir', data_dir, 'week', '--clear'])
    assert '(override)' not in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert 'usage' in capsys.readouterr().out


def test_manual_roster_backfill(data_dir, capsys):
    slots = json.dumps(dict(LINEUP, qb='qb2'))
    rc = main(['--data-dir', data_dir, 'manual-roster', '--user', 'u2', '--week', '1', '--slots', slots])
    assert rc == 0
    assert 'Roster saved and locked for u2 week wildcard' in capsys.readouterr().out
    repo = PoolRepository(JsonFileStore(os.path.join(data_dir, 'pool.json')))
    assert repo.get_roster('u2', 1).locked
    assert 'qb2' in repo.get_used_players('u2')


def test_manual_roster_incomplete(data_dir, capsys):
    rc = main(['--data-dir', data_dir, 'manual-roster', '--user', 'u2', '--week', '1', '--slots', '{"qb": "qb2"}'])
    assert rc == 1
    assert capsys.readouterr().out.startswith('Error: Missing: RB1')
