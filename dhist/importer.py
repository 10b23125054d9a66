#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import os
import csv
import time
import logging
from datetime import datetime

from dhist.errors import ImportFormatError
from dhist.store import HistoryEntry, record_command

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_FILE = "~/.zsh_history"


def parse_history_line(line, now=None):
    """Parse one zsh history line into (command, timestamp).

    Extended format lines look like ': 1700000000:0;git status'; anything
    else is taken as a plain command recorded at `now`. Returns None for
    blank or malformed lines.
    """
    if now is None:
        now = time.time()

    if line.startswith(': '):
        meta, sep, command = line.partition(';')
        if not sep:
            logger.warning(f"Skipping malformed zsh history line: {line}")
            return None
        fields = meta.split(':')
        if len(fields) < 2:
            logger.warning(f"Skipping malformed zsh history line (timestamp): {line}")
            return None
        try:
            timestamp = float(int(fields[1].strip()))
        except ValueError as e:
            logger.warning(f"Could not parse timestamp in {line!r}, using current time: {e}")
            timestamp = now
    else:
        command = line
        timestamp = now

    command = command.strip()
    if not command:
        return None
    return command, timestamp


def parse_history_file(history_file):
    """Read a zsh or plain shell history file and return (command, timestamp) pairs"""
    entries = []
    now = time.time()
    with open(history_file, 'r', encoding='utf-8', errors='replace') as f:
        for line in f:
            parsed = parse_history_line(line.rstrip('\n'), now=now)
            if parsed:
                entries.append(parsed)
    return entries


def import_history(store, history_file, context):
    """Record every command of history_file with dedup on.

    Returns (imported, skipped) counts, or None when the file does not exist.
    """
    history_file = os.path.expanduser(history_file)
    if not os.path.exists(history_file):
        return None

    imported = 0
    skipped = 0
    for command, timestamp in parse_history_file(history_file):
        candidate = HistoryEntry.new(command, context, timestamp=timestamp)
        result = record_command(store, candidate, dedup=True)
        if result.duplicate:
            skipped += 1
        else:
            imported += 1

    logger.info(f"Imported {imported} commands, skipped {skipped} from {history_file}")
    return imported, skipped


CSV_CONTEXT_COLUMNS = {
    'executing_host': 'hostname',
    'executing_dir': 'directory',
    'executing_user': 'username',
    'tty': 'tty',
    'sid': 'sid',
}


def parse_csv_timestamp(value, line_num, now):
    """RFC 3339 timestamp to epoch seconds, `now` when missing or invalid"""
    if not value:
        return now
    try:
        return datetime.fromisoformat(value).timestamp()
    except ValueError as e:
        logger.warning(f"Invalid timestamp at line {line_num}, using current time: {e}")
        return now


def import_csv(store, csv_file, context):
    """Record the rows of a CSV export.

    The header names the columns; `command` is required, `executed_at`,
    `executing_host`, `executing_dir`, `executing_user`, `tty` and `sid` are
    optional. Host, directory and user fall back to the current context,
    tty and sid to empty. An `id` column is accepted but new ids are always
    assigned. Rows are recorded with dedup off. Returns (imported, skipped) counts.
    """
    now = time.time()
    imported = 0
    skipped = 0

    with open(os.path.expanduser(csv_file), 'r', newline='', encoding='utf-8') as f:
        reader = csv.reader(f)
        try:
            header = next(reader)
        except StopIteration:
            raise ImportFormatError(f"{csv_file} is empty, expected a CSV header")
        except csv.Error as e:
            raise ImportFormatError(f"could not read CSV header of {csv_file}: {e}") from e

        columns = {name.strip().lower(): index for index, name in enumerate(header)}
        if 'command' not in columns:
            raise ImportFormatError(f"{csv_file} must have a 'command' column")

        def value(record, name):
            index = columns.get(name)
            if index is None or index >= len(record):
                return ""
            return record[index].strip()

        line_num = 1
        while True:
            line_num += 1
            try:
                record = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                raise ImportFormatError(f"could not read CSV line {line_num}: {e}") from e

            command = value(record, 'command')
            if not command:
                logger.warning(f"Skipping empty command at line {line_num}")
                skipped += 1
                continue

            row_context = dict(context, tty='', sid='')
            for column, key in CSV_CONTEXT_COLUMNS.items():
                if value(record, column):
                    row_context[key] = value(record, column)

            timestamp = parse_csv_timestamp(value(record, 'executed_at'), line_num, now)
            record_command(store, HistoryEntry.new(command, row_context, timestamp=timestamp), dedup=False)
            imported += 1

    logger.info(f"Imported {imported} rows, skipped {skipped} from {csv_file}")
    return imported, skipped
