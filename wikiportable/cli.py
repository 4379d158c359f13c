"""Command-line interface for wikiportable.

This module provides the CLI for wikiportable, supporting commands for:
- serve: Run the HTTP API server
- init: Create a default config file and the initial data file
- list: List backups
- backup: Take a manual backup
- restore: Restore the wiki from a backup
- merge: Merge a backup into the wiki
- delete: Delete a backup
- prune: Apply the retention limit now
- status: Show data file, backup, lock and recent error status
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from wikiportable import __version__
from wikiportable.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    create_default_config,
    DEFAULT_CONFIG_PATH,
)
from wikiportable.errors import (
    EXIT_CONFIG_ERROR,
    EXIT_IO_FAILURE,
    EXIT_SUCCESS,
    WikiError,
)
from wikiportable.logger import (
    LoggingError,
    get_error_guidance,
    get_recent_errors,
    setup_logging,
)
from wikiportable.retention import RetentionManager
from wikiportable.service import WikiService


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog='wikiportable',
        description='Portable personal wiki with automatic JSON backups'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help='Path to config file (default: ./wikiportable.toml)',
        metavar='PATH'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    serve_parser = subparsers.add_parser(
        'serve',
        help='Run the wiki API server'
    )
    serve_parser.add_argument(
        '--host',
        help='Interface to bind (default from config)'
    )
    serve_parser.add_argument(
        '--port',
        type=int,
        help='Port to listen on (default from config)'
    )

    init_parser = subparsers.add_parser(
        'init',
        help='Create default config file and data file'
    )
    init_parser.add_argument(
        '--force',
        action='store_true',
        help='Overwrite existing config file'
    )

    list_parser = subparsers.add_parser(
        'list',
        help='List backups'
    )
    list_parser.add_argument(
        '--json',
        action='store_true',
        help='Output as JSON'
    )

    subparsers.add_parser(
        'backup',
        help='Take a manual backup now'
    )

    restore_parser = subparsers.add_parser(
        'restore',
        help='Replace the wiki with a backup'
    )
    restore_parser.add_argument(
        'filename',
        help='Backup file name (e.g. auto_20250101_120000.json)'
    )

    merge_parser = subparsers.add_parser(
        'merge',
        help='Merge a backup into the wiki'
    )
    merge_parser.add_argument(
        'filename',
        help='Backup file name'
    )
    merge_parser.add_argument(
        '--save',
        action='store_true',
        help='Save the merged result (default: only report what would be added)'
    )

    delete_parser = subparsers.add_parser(
        'delete',
        help='Delete a backup'
    )
    delete_parser.add_argument(
        'filename',
        help='Backup file name'
    )

    subparsers.add_parser(
        'prune',
        help='Delete backups beyond the retention limit'
    )

    status_parser = subparsers.add_parser(
        'status',
        help='Show wiki and backup status'
    )
    status_parser.add_argument(
        '--errors',
        type=int,
        default=5,
        metavar='N',
        help='Number of recent errors to show (default: 5)'
    )

    return parser


def load_config(config_path: Optional[Path], verbose: bool = False) -> Optional[Configuration]:
    """
    Load configuration from file, falling back to defaults if it is absent.

    Returns None and prints error on failure.
    """
    try:
        config = parse_config(config_path, missing_ok=True)
        if verbose:
            print(f"Using config: {config_path or DEFAULT_CONFIG_PATH}")
            print(f"  Data file: {config.storage.data_path}")
            print(f"  Backups:   {config.storage.backup_dir}")
        return config
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return None


def _open_service(args: argparse.Namespace) -> Optional[WikiService]:
    """Load config, set up logging and build the service. None on failure."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return None

    try:
        setup_logging(config.logging, console=args.verbose)
    except LoggingError as e:
        print(f"Logging error: {e}", file=sys.stderr)
        return None

    return WikiService(config)


def cmd_serve(args: argparse.Namespace) -> int:
    """Execute the 'serve' command - run the HTTP API server."""
    from wikiportable.web import create_app

    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    try:
        setup_logging(config.logging)
    except LoggingError as e:
        print(f"Logging error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    host = args.host or config.server.host
    port = args.port or config.server.port

    service = WikiService(config)
    if config.storage.seed_on_start and service.initialize():
        print(f"Created initial data file: {config.storage.data_path}")

    app = create_app(config, service=service)

    print("=" * 40)
    print("Portable wiki server started")
    print(f"URL: http://{host}:{port}")
    print("=" * 40)
    print(f"  Data file:   {config.storage.data_path}")
    print(f"  Backups:     {config.storage.backup_dir}")
    print(f"  Max backups: {config.retention.max_backups}")

    app.run(host=host, port=port, debug=False)
    return EXIT_SUCCESS


def cmd_init(args: argparse.Namespace) -> int:
    """Execute the 'init' command - create default config and data file."""
    config_path = Path(args.config) if args.config else DEFAULT_CONFIG_PATH

    if config_path.exists() and not args.force:
        print(f"Config file already exists: {config_path}")
        print("Use --force to overwrite.")
    else:
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(create_default_config(), encoding="utf-8")
        except OSError as e:
            print(f"Failed to write config file: {e}", file=sys.stderr)
            return EXIT_IO_FAILURE
        print(f"Created config file: {config_path}")

    config = load_config(config_path, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    service = WikiService(config)
    if config.storage.seed_on_start and service.initialize():
        print(f"Created data file: {config.storage.data_path}")
    return EXIT_SUCCESS


def cmd_list(args: argparse.Namespace) -> int:
    """Execute the 'list' command - list backups."""
    service = _open_service(args)
    if service is None:
        return EXIT_CONFIG_ERROR

    backups = service.list_backups()

    if args.json:
        print(json.dumps([b.to_dict() for b in backups], indent=2, ensure_ascii=False))
        return EXIT_SUCCESS

    if not backups:
        print("No backups found.")
        return EXIT_SUCCESS

    print(f"{'Backup':<36} {'Created':<20} {'Size':>10} {'Entries':>8}")
    print("-" * 77)
    for backup in backups:
        created = backup.created_at.strftime('%Y-%m-%d %H:%M:%S')
        count = str(backup.entry_count) if backup.entry_count is not None else "?"
        print(f"{backup.filename:<36} {created:<20} {_format_size(backup.size):>10} {count:>8}")
    print("-" * 77)
    print(f"Total: {len(backups)} backup(s)")

    return EXIT_SUCCESS


def cmd_backup(args: argparse.Namespace) -> int:
    """Execute the 'backup' command - take a manual backup."""
    service = _open_service(args)
    if service is None:
        return EXIT_CONFIG_ERROR

    record = service.manual_backup()
    print(f"Created backup: {record.filename}")
    return EXIT_SUCCESS


def cmd_restore(args: argparse.Namespace) -> int:
    """Execute the 'restore' command - replace the wiki with a backup."""
    service = _open_service(args)
    if service is None:
        return EXIT_CONFIG_ERROR

    entries = service.restore(args.filename)
    print(f"Restored {len(entries)} entries from {args.filename}")
    return EXIT_SUCCESS


def cmd_merge(args: argparse.Namespace) -> int:
    """Execute the 'merge' command - merge a backup into the wiki."""
    service = _open_service(args)
    if service is None:
        return EXIT_CONFIG_ERROR

    result = service.merge(args.filename, save=args.save)

    if args.save:
        print(f"Merged {result.added_count} entries from {args.filename}")
    else:
        print(f"{result.added_count} entries would be added from {args.filename}")
        print("Run again with --save to write the merged wiki.")
    if args.verbose:
        print(f"  Re-identified: {len(result.reassigned_ids)}")
        print(f"  Retitled:      {result.retitled_count}")
        print(f"  Total entries: {len(result.merged)}")
    return EXIT_SUCCESS


def cmd_delete(args: argparse.Namespace) -> int:
    """Execute the 'delete' command - delete a backup."""
    service = _open_service(args)
    if service is None:
        return EXIT_CONFIG_ERROR

    service.delete_backup(args.filename)
    print(f"Deleted backup: {args.filename}")
    return EXIT_SUCCESS


def cmd_prune(args: argparse.Namespace) -> int:
    """Execute the 'prune' command - apply the retention limit."""
    service = _open_service(args)
    if service is None:
        return EXIT_CONFIG_ERROR

    result = service.prune()
    print(
        f"Deleted {len(result.deleted_backups)} backup(s), "
        f"kept {len(result.kept_backups)} ({_format_size(result.freed_bytes)} freed)"
    )
    if result.failed_backups:
        for path in result.failed_backups:
            print(f"Could not delete: {path.name}", file=sys.stderr)
        return EXIT_IO_FAILURE
    return EXIT_SUCCESS


def cmd_status(args: argparse.Namespace) -> int:
    """Execute the 'status' command - show wiki and backup status."""
    config = load_config(args.config, args.verbose)
    if config is None:
        return EXIT_CONFIG_ERROR

    service = WikiService(config)

    # Read-only, so the lock is reported rather than taken
    is_busy = service.lock.is_locked()
    holder_pid = service.lock.get_lock_holder_pid() if is_busy else None

    backups = service.backups.list_backups()
    over_limit = RetentionManager(
        config.storage.backup_dir,
        config.retention.max_backups,
    ).get_backups_to_delete()
    recent_errors = get_recent_errors(config.logging.error_log_file, max_entries=args.errors)

    print("wikiportable Status")
    print("=" * 40)

    data_path = config.storage.data_path
    if not data_path.exists():
        print(f"Data file: {data_path} (missing)")
    else:
        try:
            entries = service.store.load()
            print(f"Data file: {data_path} ({len(entries)} entries)")
        except WikiError as e:
            print(f"Data file: {data_path} (unreadable: {e.error_code.value})")

    print()

    if backups:
        latest = backups[0]
        print(f"Last backup: {latest.filename}")
        print(f"  Created: {latest.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"  Size: {_format_size(latest.size)}")
    else:
        print("Last backup: Never")
    print(f"Total backups: {len(backups)} (limit {config.retention.max_backups})")
    if over_limit:
        print(f"  {len(over_limit)} backup(s) over the limit; run 'prune' to remove them")

    print()

    if is_busy:
        print(f"Status: Busy (PID: {holder_pid})")
    else:
        print("Status: Idle")

    if recent_errors:
        print()
        print(f"Recent errors ({len(recent_errors)}):")
        for entry in recent_errors:
            print(f"  {entry.timestamp} [{entry.error_code}] {entry.message}")
            if args.verbose and entry.guidance:
                print(f"    {entry.guidance}")

    return EXIT_SUCCESS


def _format_size(size_bytes: int) -> str:
    """Format size in bytes to human-readable string."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"


COMMANDS = {
    'serve': cmd_serve,
    'init': cmd_init,
    'list': cmd_list,
    'backup': cmd_backup,
    'restore': cmd_restore,
    'merge': cmd_merge,
    'delete': cmd_delete,
    'prune': cmd_prune,
    'status': cmd_status,
}


def main(argv: list = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_SUCCESS

    handler = COMMANDS[args.command]

    try:
        return handler(args)
    except WikiError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if args.verbose:
            print(f"  [{e.error_code.value}] {get_error_guidance(e.error_code)}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130  # Standard exit code for SIGINT


if __name__ == "__main__":
    sys.exit(main())
