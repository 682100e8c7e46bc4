"""
focussync/cli.py
Command-line interface for focus-sync.

USAGE:
  focussync serve [--host 127.0.0.1] [--port 8787]
  focussync create-key --user u1 --name "Work laptop"
  focussync daily --user u1 --date 2024-03-09
  focussync status --user u1
  focussync keys --user u1
  focussync revoke-key --user u1 --id <key id>

All commands read focussync_config.json from the current directory
(written with defaults on first run). --db overrides the database path.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from focussync.api import FocusSyncAPI, serve
from focussync.config import ensure_config, resolve_db_path
from focussync.errors import FocusSyncError

logger = logging.getLogger(__name__)

# ANSI colors
GREEN  = '\033[92m'
YELLOW = '\033[93m'
RED    = '\033[91m'
CYAN   = '\033[96m'
RESET  = '\033[0m'
BOLD   = '\033[1m'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog        = 'focussync',
        description = 'focus-sync — focus-session ingestion and daily productivity review',
    )
    parser.add_argument(
        '--db',
        type    = Path,
        default = None,
        help    = 'SQLite database path (default: db_path from config)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action  = 'store_true',
        help    = 'Enable debug logging',
    )
    sub = parser.add_subparsers(dest='command', required=True)

    p_serve = sub.add_parser('serve', help='Run the HTTP API server')
    p_serve.add_argument('--host', default=None, help='Host to bind (default: config host)')
    p_serve.add_argument('--port', type=int, default=None, help='Port to bind (default: config port)')

    p_key = sub.add_parser('create-key', help='Create a device API key (shown once)')
    p_key.add_argument('--user', required=True, help='Owning user id')
    p_key.add_argument('--name', required=True, help='Device name, e.g. "Work laptop"')
    p_key.add_argument('--device-id', default=None, help='Device id (default: random UUID)')

    p_daily = sub.add_parser('daily', help="Print a past day's stats as JSON")
    p_daily.add_argument('--user', required=True)
    p_daily.add_argument('--date', required=True, help='YYYY-MM-DD, before today')

    p_status = sub.add_parser('status', help='Print sync status as JSON')
    p_status.add_argument('--user', required=True)

    p_keys = sub.add_parser('keys', help="List a user's device keys")
    p_keys.add_argument('--user', required=True)

    p_revoke = sub.add_parser('revoke-key', help='Revoke a device API key')
    p_revoke.add_argument('--user', required=True, help='Owning user id')
    p_revoke.add_argument('--id', required=True, dest='key_id', help='Key id, as listed by "keys"')

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # ── LOGGING SETUP ────────────────────────────────────────
    logging.basicConfig(
        level   = logging.DEBUG if args.verbose else logging.INFO,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    root = Path.cwd()
    config = ensure_config(root)
    db_path = args.db or resolve_db_path(config, root)
    api = FocusSyncAPI(db_path=db_path, config=config)

    if args.command == 'serve':
        serve(api, host=args.host or config['host'], port=args.port or config['port'])
        return 0

    api.init()
    try:
        if args.command == 'create-key':
            created = api.create_key(args.user, args.name, args.device_id)
            _print(f"\n{BOLD}{GREEN}✓ API key created{RESET}")
            _print(f"  Device   : {created['name']} ({created['device_id']})")
            _print(f"  Key      : {CYAN}{created['key']}{RESET}")
            _print(f"\n{YELLOW}Store this key now — it cannot be shown again.{RESET}\n")
        elif args.command == 'daily':
            _print(json.dumps(api.get_daily(args.user, args.date), indent=2))
        elif args.command == 'status':
            _print(json.dumps(api.sync_status(args.user), indent=2))
        elif args.command == 'keys':
            _print(json.dumps(api.list_keys(args.user), indent=2))
        elif args.command == 'revoke-key':
            api.revoke_key(args.user, args.key_id)
            _print(f"{GREEN}✓ Revoked key {args.key_id}{RESET}")
    except FocusSyncError as exc:
        _print(f"{RED}Error: {exc}{RESET}")
        return 1
    finally:
        api.runner.shutdown()
    return 0


def _print(msg): print(msg)


if __name__ == '__main__':
    sys.exit(main())
