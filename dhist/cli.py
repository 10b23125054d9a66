#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import os
import sys
import logging
import argparse

from dhist import __version__
from dhist.config import (
    CONFIG_FILE,
    DEFAULT_CONFIG_TEXT,
    DEFAULT_LOG_FILE,
    load_config,
    setup_logging,
)
from dhist.context import get_process_context
from dhist.errors import DhistError
from dhist.importer import DEFAULT_HISTORY_FILE, import_csv, import_history
from dhist.ordering import order_entries
from dhist.query import parse_or_fallback
from dhist.session import SearchSession
from dhist.store import HistoryEntry, HistoryStore, record_command, safe_makedirs

logger = logging.getLogger(__name__)

ZSH_INTEGRATION = r"""# dhist zsh integration
dhist_add_history() {
    dhist add --tty "$TTY" -- "${1%%$'\n'}"
}
zshaddhistory_functions+=("dhist_add_history")

function dhist-history-selection() {
    local selected
    selected=$(dhist search)
    if [[ -n "$selected" ]]; then
        BUFFER=$selected
        CURSOR=$#BUFFER
    fi
    zle reset-prompt
}

zle -N dhist-history-selection
bindkey '^R' dhist-history-selection
"""


def open_store_for_write(db_path):
    """Open the database read-write, creating the schema on first use"""
    safe_makedirs(os.path.dirname(os.path.abspath(db_path)))
    store = HistoryStore(db_path)
    try:
        if store.schema_version() == 0:
            store.init_schema()
    except DhistError:
        store.close()
        raise
    return store


def cmd_init(args, config):
    config_path = args.config or CONFIG_FILE
    if not safe_makedirs(os.path.dirname(config_path)):
        print(f"Error: could not create {os.path.dirname(config_path)}", file=sys.stderr)
        return 1

    if not os.path.exists(config_path):
        if args.config:
            print(f"Error: cannot open config file: {config_path}", file=sys.stderr)
            return 1
        with open(config_path, 'w') as f:
            f.write(DEFAULT_CONFIG_TEXT)
        print(f"Created config file at: {config_path}")

    with open_store_for_write(config.database_path) as store:
        store.init_schema()
    print(f"Initialized database at: {config.database_path}")

    if config_path == CONFIG_FILE:
        script_path = os.path.join(os.path.dirname(config_path), "zsh-dhist.zsh")
        with open(script_path, 'w') as f:
            f.write(ZSH_INTEGRATION)
        print(f"Created Zsh integration script at: {script_path}")
        print("\nTo integrate with Zsh, add the following line to your ~/.zshrc:")
        print(f"source {script_path}")
    return 0


def cmd_add(args, config):
    command = " ".join(args.command).strip()
    if not command:
        if args.verbose:
            print("Empty command, skipping", file=sys.stderr)
        return 1

    context = get_process_context(directory=args.directory, tty=args.tty, sid=args.sid)
    candidate = HistoryEntry.new(command, context)
    dedup = config.dedup and not args.no_dedup

    with open_store_for_write(config.database_path) as store:
        result = record_command(store, candidate, dedup=dedup)

    if args.verbose:
        if result.id is None:
            print(f"Duplicate command, not added: {command}", file=sys.stderr)
        else:
            print(f"Command added to history: {command}", file=sys.stderr)
    return 0


def cmd_search(args, config):
    from dhist.ui import run_search

    with HistoryStore(config.database_path, read_only=True) as store:
        store.check_schema_version()
        session = SearchSession.load(store, args.directory)
        result = run_search(session)

    if result:
        print(result)
    return 0


def cmd_list(args, config):
    with HistoryStore(config.database_path, read_only=True) as store:
        if args.query:
            entries = store.search(parse_or_fallback(args.query))
        else:
            entries = store.list_all()

    for entry in reversed(entries):
        print(entry.command)
    return 0


def cmd_history(args, config):
    current_dir = args.directory or os.getcwd()
    with HistoryStore(config.database_path, read_only=True) as store:
        local_entries = store.list_by_directory(current_dir, limit=config.current_directory_history_limit)
        all_entries = store.list_all()

    printed = set()
    for entry in local_entries:
        if entry.command not in printed:
            print(entry.command)
            printed.add(entry.command)

    print("---")

    # remaining history newest first, current directory still ahead of the rest
    ordered = order_entries(all_entries, current_dir)
    local = [entry for entry in ordered if entry.directory == current_dir]
    others = [entry for entry in ordered if entry.directory != current_dir]
    for entry in local[::-1] + others[::-1]:
        if entry.command not in printed:
            print(entry.command)
            printed.add(entry.command)
    return 0


def cmd_import_history(args, config):
    history_file = os.path.expanduser(args.file or DEFAULT_HISTORY_FILE)
    context = get_process_context()
    try:
        with open_store_for_write(config.database_path) as store:
            counts = import_history(store, history_file, context)
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Could not read history file {history_file}: {e}")
        print(f"Error: could not read history file {history_file}: {e}", file=sys.stderr)
        return 1

    if counts is None:
        print(f"History file not found: {history_file}")
        return 0
    imported, skipped = counts
    print(f"Imported {imported} commands and skipped {skipped} duplicate commands from {history_file}")
    return 0


def cmd_import(args, config):
    csv_file = os.path.expanduser(args.file)
    context = get_process_context()
    try:
        with open_store_for_write(config.database_path) as store:
            imported, skipped = import_csv(store, csv_file, context)
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Could not read CSV file {csv_file}: {e}")
        print(f"Error: could not read CSV file {csv_file}: {e}", file=sys.stderr)
        return 1

    print(f"Imported {imported} commands and skipped {skipped} empty rows from {csv_file}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog='dhist',
        description='Directory-aware shell command history with incremental search'
    )
    parser.add_argument('--config', metavar='FILE', help=f'Config file (default: {CONFIG_FILE})')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest='subcommand', metavar='COMMAND')

    init_parser = subparsers.add_parser('init', help='Create config, database and Zsh integration')
    init_parser.set_defaults(func=cmd_init)

    add_parser = subparsers.add_parser('add', help='Record a command (use -- before the command)')
    add_parser.add_argument('command', nargs='*', help='Command text')
    add_parser.add_argument('--directory', '-d', help='Directory to record (default: current directory)')
    add_parser.add_argument('--tty', help='TTY (default: $TTY)')
    add_parser.add_argument('--sid', help='Session ID')
    add_parser.add_argument('--no-dedup', action='store_true', help='Record even if an identical entry exists')
    add_parser.add_argument('--verbose', '-v', action='store_true', help='Report what was recorded')
    add_parser.set_defaults(func=cmd_add)

    search_parser = subparsers.add_parser('search', help='Interactively search command history')
    search_parser.add_argument('--directory', '-d', help='Directory to favour (default: current directory)')
    search_parser.set_defaults(func=cmd_search)

    list_parser = subparsers.add_parser('list', help='List commands, newest first')
    list_parser.add_argument('--query', '-q', metavar='QUERY', help='Only commands matching QUERY')
    list_parser.set_defaults(func=cmd_list)

    history_parser = subparsers.add_parser('history', help='History for fzf/peco: current directory first')
    history_parser.add_argument('--directory', '-d', help='Directory to show first (default: current directory)')
    history_parser.set_defaults(func=cmd_history)

    import_parser = subparsers.add_parser('import-history', help='Import commands from ~/.zsh_history')
    import_parser.add_argument('file', nargs='?', help=f'History file (default: {DEFAULT_HISTORY_FILE})')
    import_parser.set_defaults(func=cmd_import_history)

    csv_parser = subparsers.add_parser('import', help='Import commands from a CSV file')
    csv_parser.add_argument('--file', '-f', required=True, help='CSV file with a header; command column required')
    csv_parser.set_defaults(func=cmd_import)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, 'func', None):
        parser.print_help()
        return 2

    try:
        config = load_config(args.config)
    except DhistError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_file or os.path.expanduser(DEFAULT_LOG_FILE), debug=args.debug)

    try:
        return args.func(args, config)
    except DhistError as e:
        logger.error(f"dhist {args.subcommand} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
