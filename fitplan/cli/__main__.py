"""
fitplan CLI - inspect and drive the offline-first data core.

Usage:
    fitplan status [--json]
    fitplan load [--json]
    fitplan sync
    fitplan profile show [--json]
    fitplan profile set KEY=VALUE...
    fitplan weight add VALUE [--notes N]
    fitplan session add ACTIVITY DURATION [--intensity I] [--calories C]
    fitplan export
    fitplan import FILE
    fitplan backup create|list|restore KEY
    fitplan clear
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from fitplan.app import FitplanApp, build_app
from fitplan.config import load_config
from fitplan.errors import RemoteWriteError

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _require_user(args) -> str:
    if not args.user:
        raise ValueError("No user id: pass --user or set FITPLAN_USER_ID")
    return args.user


def parse_assignments(pairs: List[str]) -> Dict[str, Any]:
    """Parse KEY=VALUE pairs; values are JSON when they parse as JSON."""
    changes: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        try:
            changes[key] = json.loads(raw)
        except ValueError:
            changes[key] = raw
    return changes


def cmd_status(args, app: FitplanApp):
    status = app.orchestrator.status()
    status["storage"] = app.backups.storage_info()
    if args.json:
        _print_json(status)
        return
    print(f"Online:   {'yes' if status['online'] else 'no'}")
    print(f"Storage:  {status['storage_mode']}{' (degraded)' if status['degraded'] else ''}")
    print(f"Pending:  {status['pending']} change(s) waiting to sync")
    print(f"Entries:  {status['storage']['entries']} ({status['storage']['app_data_size']})")


def cmd_load(args, app: FitplanApp):
    data = app.orchestrator.load_user_data(_require_user(args))
    if args.json:
        _print_json(data.to_dict())
        return
    profile = data.profile.value or {}
    print(f"{profile.get('name', '?')} ({data.profile.state.value})")
    print(f"Sessions: {len(data.sessions.value)} ({data.sessions.state.value})")
    print(f"Weights:  {len(data.weights.value)} ({data.weights.state.value})")
    if data.weather and data.weather.value:
        weather = data.weather.value
        print(f"Weather:  {weather.get('temp')}°C {weather.get('condition')}")


def cmd_sync(args, app: FitplanApp):
    # A transition to online drains the queue inside refresh_connectivity().
    if not app.orchestrator.refresh_connectivity():
        print(f"Offline - sync postponed ({app.orchestrator.pending_sync_count} pending)")
        return
    app.orchestrator.sync_now()
    print(f"✓ Sync done, {app.orchestrator.pending_sync_count} change(s) pending")


def cmd_profile(args, app: FitplanApp):
    user_id = _require_user(args)
    if args.profile_action == "show":
        profile = app.orchestrator.get_profile(user_id)
        if args.json:
            _print_json({"value": profile.value, "state": profile.state.value})
        elif profile.value is None:
            print("No profile cached")
        else:
            for key, value in sorted(profile.value.items()):
                print(f"{key}: {value}")
    elif args.profile_action == "set":
        profile = app.orchestrator.update_profile(user_id, **parse_assignments(args.assignments))
        print(f"✓ Profile saved ({len(profile)} fields)")


def cmd_weight(args, app: FitplanApp):
    entry = app.orchestrator.add_weight_entry(_require_user(args), args.value, args.notes)
    print(f"✓ Weight {entry['weight']} recorded")


def cmd_session(args, app: FitplanApp):
    session = {
        "activity": args.activity,
        "duration": args.duration,
        "actual_duration": args.duration,
        "intensity": args.intensity,
        "calories": args.calories,
        "completed": True,
    }
    saved = app.orchestrator.add_session(_require_user(args), session)
    print(f"✓ Session {saved['activity']} ({saved['duration']} min) recorded")


def cmd_export(args, app: FitplanApp):
    exported = app.backups.export_user_data(_require_user(args))
    if exported is None:
        raise ValueError("Nothing to export")
    print(exported)


def cmd_import(args, app: FitplanApp):
    content = Path(args.file).read_text()
    if not app.backups.import_user_data(_require_user(args), content):
        raise ValueError(f"Could not import {args.file}")
    print(f"✓ Imported {args.file}")


def cmd_backup(args, app: FitplanApp):
    user_id = _require_user(args)
    if args.backup_action == "create":
        key = app.backups.create_backup(user_id)
        print(f"✓ Backup {key} created" if key else "✗ Backup failed")
    elif args.backup_action == "list":
        backups = app.backups.list_backups(user_id)
        if args.json:
            _print_json(backups)
            return
        if not backups:
            print("No backups")
        for backup in backups:
            print(f"{backup['key']}  {backup['size']}")
    elif args.backup_action == "restore":
        restored = app.backups.restore_backup(args.key, apply=True)
        print(f"✓ Restored {args.key}" if restored else f"✗ Backup {args.key} not found")


def cmd_clear(args, app: FitplanApp):
    if app.orchestrator.logout():
        print("✓ Local data cleared")
    else:
        print("✗ Local data could not be fully cleared")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fitplan",
        description="Offline-first fitness data: cache, queue and sync",
    )
    parser.add_argument("--user", "-u", help="User ID (default: FITPLAN_USER_ID)", default=None)
    parser.add_argument("--offline", action="store_true", help="Force offline mode")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_status = subparsers.add_parser("status", help="Connectivity, storage and queue status")
    p_status.add_argument("--json", "-j", action="store_true")

    p_load = subparsers.add_parser("load", help="Load the user's data")
    p_load.add_argument("--json", "-j", action="store_true")

    subparsers.add_parser("sync", help="Push queued changes now")

    p_profile = subparsers.add_parser("profile", help="Profile operations")
    profile_sub = p_profile.add_subparsers(dest="profile_action", required=True)
    profile_show = profile_sub.add_parser("show", help="Show the profile")
    profile_show.add_argument("--json", "-j", action="store_true")
    profile_set = profile_sub.add_parser("set", help="Update profile fields")
    profile_set.add_argument("assignments", nargs="+", metavar="KEY=VALUE")

    p_weight = subparsers.add_parser("weight", help="Weight tracking")
    weight_sub = p_weight.add_subparsers(dest="weight_action", required=True)
    weight_add = weight_sub.add_parser("add", help="Record a weight")
    weight_add.add_argument("value", type=float)
    weight_add.add_argument("--notes", "-n")

    p_session = subparsers.add_parser("session", help="Activity sessions")
    session_sub = p_session.add_subparsers(dest="session_action", required=True)
    session_add = session_sub.add_parser("add", help="Record a completed session")
    session_add.add_argument("activity")
    session_add.add_argument("duration", type=int, help="Minutes")
    session_add.add_argument("--intensity", "-i", default="modéré")
    session_add.add_argument("--calories", "-c", type=int)

    subparsers.add_parser("export", help="Export cached data as JSON")

    p_import = subparsers.add_parser("import", help="Import data exported earlier")
    p_import.add_argument("file")

    p_backup = subparsers.add_parser("backup", help="Local backups")
    backup_sub = p_backup.add_subparsers(dest="backup_action", required=True)
    backup_sub.add_parser("create", help="Create a backup")
    backup_list = backup_sub.add_parser("list", help="List backups")
    backup_list.add_argument("--json", "-j", action="store_true")
    backup_restore = backup_sub.add_parser("restore", help="Restore a backup")
    backup_restore.add_argument("key")

    subparsers.add_parser("clear", help="Clear all local data")

    return parser


COMMANDS = {
    "status": cmd_status,
    "load": cmd_load,
    "sync": cmd_sync,
    "profile": cmd_profile,
    "weight": cmd_weight,
    "session": cmd_session,
    "export": cmd_export,
    "import": cmd_import,
    "backup": cmd_backup,
    "clear": cmd_clear,
}


def main(argv: Optional[List[str]] = None, app: Optional[FitplanApp] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger("fitplan").setLevel(logging.DEBUG)

    owns_app = app is None
    try:
        if app is None:
            config = load_config()
            app = build_app(config, offline=args.offline)
        if not args.user:
            args.user = app.config.user_id
    except (ValueError, OSError) as e:
        logger.error(f"Failed to initialize fitplan: {e}")
        return 1

    try:
        COMMANDS[args.command](args, app)
    except RemoteWriteError as e:
        print(f"⚠ Saved locally, but the server did not accept the change: {e.cause}")
        return 1
    except (ValueError, OSError) as e:
        print(f"✗ {e}")
        return 1
    finally:
        if owns_app:
            app.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
