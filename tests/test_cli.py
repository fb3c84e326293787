"""Tests for the ranked command line."""

import json

import pytest

from ranked.database.models import Modality, Category
from ranked.main import build_parser, scope_from_args, main
from ranked.utils.exceptions import InvalidScopeError


class TestParser:

    def test_leaderboard_arguments(self):
        args = build_parser().parse_args([
            'leaderboard', '--modality', 'foam', '--category', 'mixto',
            '--competition', '3', '--limit', '25', '--min-matches', '5'
        ])
        assert args.command == 'leaderboard'
        assert (args.limit, args.page, args.min_matches) == (25, 1, 5)

        scope = scope_from_args(args)
        assert scope.modality is Modality.FOAM
        assert scope.category is Category.MIXTO
        assert scope.storage_key == "3:*:Foam:Mixto"

    def test_bulk_delete_players(self):
        args = build_parser().parse_args([
            'bulk-delete', '--modality', 'Cloth', '--category', 'Libre', '--players', '4', '5', '6',
            '--reason', 'cheating'
        ])
        assert args.players == [4, 5, 6]
        assert args.reason == 'cheating'

    def test_revert_requires_match_id(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['revert'])

    def test_scope_requires_modality(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['recompute', '--category', 'Mixto'])

    def test_season_without_competition(self):
        args = build_parser().parse_args(['recompute', '--modality', 'Foam', '--category', 'Mixto', '--season', '2'])
        with pytest.raises(InvalidScopeError):
            scope_from_args(args)


class TestCommands:

    def test_apply_leaderboard_and_revert(self, tmp_path, capsys):
        database_url = f"sqlite:///{tmp_path}/cli.db"
        event_file = tmp_path / "match.json"
        event_file.write_text(json.dumps({
            'match_id': 7,
            'modality': "Foam",
            'category': "Mixto",
            'rosters': {'rojo': [1], 'azul': [2]},
            'winner_color': "rojo",
        }))
        scope_args = ['--modality', 'Foam', '--category', 'Mixto']

        assert main(['--database-url', database_url, 'init-db']) == 0
        assert main(['--database-url', database_url, 'apply', '--event-file', str(event_file)]) == 0
        assert main(['--database-url', database_url, 'leaderboard'] + scope_args) == 0
        output = capsys.readouterr().out
        assert "1516.0" in output and "1484.0" in output

        assert main(['--database-url', database_url, 'apply', '--event-file', str(event_file)]) == 1
        assert main(['--database-url', database_url, 'revert', '7']) == 0
        assert main(['--database-url', database_url, 'rank-context', '1'] + scope_args) == 0

    def test_invalid_event_exit_code(self, tmp_path):
        event_file = tmp_path / "bad.json"
        event_file.write_text(json.dumps({
            'match_id': 1, 'modality': "Foam", 'category': "Mixto",
            'rosters': {'rojo': [], 'azul': []}, 'winner_color': "rojo",
        }))

        assert main(['--database-url', f"sqlite:///{tmp_path}/cli.db", 'apply', '--event-file', str(event_file)]) == 2

    def test_malformed_event_ids_exit_code(self, tmp_path):
        event_file = tmp_path / "bad_ids.json"
        event_file.write_text(json.dumps({
            'match_id': "not-a-number", 'modality': "Foam", 'category': "Mixto",
            'rosters': {'rojo': [1], 'azul': [2]}, 'winner_color': "rojo",
        }))

        assert main(['--database-url', f"sqlite:///{tmp_path}/cli.db", 'apply', '--event-file', str(event_file)]) == 2

    def test_unranked_player_exit_code(self, tmp_path):
        code = main([
            '--database-url', f"sqlite:///{tmp_path}/cli.db",
            'rank-context', '9', '--modality', 'Foam', '--category', 'Mixto'
        ])
        assert code == 1
