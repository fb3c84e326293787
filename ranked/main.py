"""
Command line entry point for the rating engine.

Usage:
    python -m ranked.main init-db
    python -m ranked.main apply --event-file match.json
    python -m ranked.main revert 42 --reason "wrong winner"
    python -m ranked.main leaderboard --modality Foam --category Mixto --competition 3
"""

import argparse
import asyncio
import json
import sys
import traceback
from typing import List, Optional

from ranked.config import Config
from ranked.data_models.scope import ScopeKey
from ranked.database.database import Database
from ranked.database.models import Modality, Category
from ranked.services.rating_service import RatingService
from ranked.utils.elo import EloCalculator
from ranked.utils.exceptions import RatingEngineError, RatingValidationError
from ranked.utils.logger import setup_logger

logger = setup_logger(__name__)


def _add_scope_arguments(parser: argparse.ArgumentParser, required: bool = True):
    parser.add_argument('--modality', required=required, help='Foam or Cloth')
    parser.add_argument('--category', required=required, help='Masculino, Femenino, Mixto or Libre')
    parser.add_argument('--competition', type=int, default=None, help='Competition id (omit for global)')
    parser.add_argument('--season', type=int, default=None, help='Season id (requires --competition)')


def _add_audit_arguments(parser: argparse.ArgumentParser):
    parser.add_argument('--reason', default=None, help='Reason recorded in the audit log')
    parser.add_argument('--performed-by', default=None, help='Operator recorded in the audit log')


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for every command"""
    parser = argparse.ArgumentParser(prog='ranked', description='Ranked match rating engine')
    parser.add_argument('--database-url', default=None,
                        help=f'Database URL (default: {Config.DATABASE_URL})')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('init-db', help='Create the rating tables')

    apply_parser = subparsers.add_parser('apply', help='Apply a finalized match from a JSON event file')
    apply_parser.add_argument('--event-file', required=True, help='Path to the match-finalized event JSON')

    revert_parser = subparsers.add_parser('revert', help='Revert a match in every scope it touched')
    revert_parser.add_argument('match_id', type=int)
    _add_audit_arguments(revert_parser)

    recompute_parser = subparsers.add_parser('recompute', help='Rebuild a scope from its snapshots')
    _add_scope_arguments(recompute_parser)
    _add_audit_arguments(recompute_parser)

    reset_parser = subparsers.add_parser('reset-scope', help='Delete every rating and snapshot of a scope')
    _add_scope_arguments(reset_parser)
    _add_audit_arguments(reset_parser)

    bulk_parser = subparsers.add_parser('bulk-delete', help="Delete players' rating rows in a scope")
    _add_scope_arguments(bulk_parser)
    bulk_parser.add_argument('--players', type=int, nargs='+', required=True, help='Player ids')
    _add_audit_arguments(bulk_parser)

    leaderboard_parser = subparsers.add_parser('leaderboard', help='Show a page of a scope leaderboard')
    _add_scope_arguments(leaderboard_parser)
    leaderboard_parser.add_argument('--limit', type=int, default=10)
    leaderboard_parser.add_argument('--page', type=int, default=1)
    leaderboard_parser.add_argument('--min-matches', type=int, default=0)

    context_parser = subparsers.add_parser('rank-context', help="Show a player's neighbourhood on a leaderboard")
    _add_scope_arguments(context_parser)
    context_parser.add_argument('player_id', type=int)
    context_parser.add_argument('--window', type=int, default=Config.RANK_CONTEXT_WINDOW)
    context_parser.add_argument('--min-matches', type=int, default=0)

    return parser


def scope_from_args(args: argparse.Namespace) -> ScopeKey:
    """Build the ScopeKey named by the scope options"""
    return ScopeKey(
        modality=Modality.normalize(args.modality),
        category=Category.normalize(args.category),
        competition_id=args.competition,
        season_id=args.season
    )


def _print_entries(entries):
    for entry in entries:
        print(
            f"{entry.rank:>4}. player {entry.player_id:<8} {entry.rating:>7.1f} "
            f"({EloCalculator.format_delta(entry.last_delta)})  "
            f"{entry.wins}/{entry.matches_played} won, {entry.win_rate:.1f}%"
        )


async def run(args: argparse.Namespace) -> int:
    """Execute one parsed command against the database"""
    db = Database(args.database_url)
    await db.initialize()
    try:
        if args.command == 'init-db':
            print("Rating tables are ready")
            return 0

        service = RatingService(db)

        if args.command == 'apply':
            with open(args.event_file, encoding='utf-8') as f:
                payload = json.load(f)
            result = await service.handle_match_finalized(payload)
            for application in result.applications:
                print(f"[{application.scope}]")
                for player in application.result.players:
                    afk = " (AFK)" if player.is_afk else ""
                    print(
                        f"  player {player.player_id} {player.team_color.value}: "
                        f"{player.pre:.1f} -> {player.post:.1f} ({EloCalculator.format_delta(player.delta)}){afk}"
                    )

        elif args.command == 'revert':
            result = await service.revert(args.match_id, reason=args.reason, performed_by=args.performed_by)
            if result.noop:
                print(f"Match {args.match_id} has nothing to revert")
            else:
                print(
                    f"Reverted match {args.match_id}: {result.snapshots_reverted} snapshot(s) "
                    f"in {len(result.scope_keys)} scope(s)"
                )

        elif args.command == 'recompute':
            result = await service.recompute(scope_from_args(args), reason=args.reason,
                                             performed_by=args.performed_by)
            print(f"Rebuilt {result.players_rebuilt} player(s) from {result.snapshots_replayed} snapshot(s)")

        elif args.command == 'reset-scope':
            result = await service.reset_scope(scope_from_args(args), reason=args.reason,
                                               performed_by=args.performed_by)
            print(
                f"Deleted {result.ratings_deleted} rating(s) and {result.snapshots_deleted} snapshot(s); "
                f"{result.matches_reverted} match(es) may be applied again"
            )

        elif args.command == 'bulk-delete':
            deleted = await service.bulk_delete(scope_from_args(args), args.players, reason=args.reason,
                                                performed_by=args.performed_by)
            print(f"Deleted {deleted} rating(s)")

        elif args.command == 'leaderboard':
            page = await service.leaderboard(scope_from_args(args), limit=args.limit,
                                             min_matches_played=args.min_matches, page=args.page)
            print(f"{page.scope} - page {page.current_page}/{page.total_pages} ({page.total_players} players)")
            _print_entries(page.entries)

        elif args.command == 'rank-context':
            context = await service.rank_context(scope_from_args(args), args.player_id,
                                                 window=args.window, min_matches_played=args.min_matches)
            if context is None:
                print(f"Player {args.player_id} is not ranked in this scope")
                return 1
            _print_entries(context.entries)

        return 0
    finally:
        await db.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    Config.validate()
    args = build_parser().parse_args(argv)

    try:
        return asyncio.run(run(args))
    except RatingEngineError as e:
        logger.error(str(e))
        print(e.user_message, file=sys.stderr)
        return 2 if isinstance(e, RatingValidationError) else 1
    except (OSError, json.JSONDecodeError) as e:
        print(f"❌ Could not read event file: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
