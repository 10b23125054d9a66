#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import os
import sys
import time
import sqlite3
import logging
import urllib.parse
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import NamedTuple, Optional

from dhist.errors import StoreAccessError
from dhist.query import contains_folded, to_sql

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        command TEXT NOT NULL,
        executed_at REAL NOT NULL,
        executing_host TEXT NOT NULL DEFAULT '',
        executing_dir TEXT NOT NULL DEFAULT '',
        executing_user TEXT NOT NULL DEFAULT '',
        tty TEXT NOT NULL DEFAULT '',
        sid TEXT NOT NULL DEFAULT ''
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_history_executed_at ON history(executed_at DESC)',
    'CREATE INDEX IF NOT EXISTS idx_history_dir ON history(executing_dir)',
    '''
    CREATE INDEX IF NOT EXISTS idx_history_dedup
        ON history(command, executing_dir, executing_host, executing_user)
    ''',
]

COLUMNS = "id, command, executed_at, executing_host, executing_dir, executing_user, tty, sid"


@dataclass(frozen=True)
class HistoryEntry:
    id: Optional[int]
    command: str
    timestamp: float
    hostname: str = ""
    directory: str = ""
    username: str = ""
    tty: str = ""
    sid: str = ""

    @classmethod
    def from_row(cls, row):
        return cls(*row)

    @classmethod
    def new(cls, command, context, timestamp=None):
        """Build an entry to be inserted from a process context dict"""
        return cls(
            id=None,
            command=command,
            timestamp=time.time() if timestamp is None else timestamp,
            hostname=context.get('hostname', ''),
            directory=context.get('directory', ''),
            username=context.get('username', ''),
            tty=context.get('tty', ''),
            sid=context.get('sid', ''),
        )

    @property
    def dedup_key(self):
        return (self.command, self.directory, self.hostname, self.username)

    def to_dict(self):
        data = asdict(self)
        data['datetime'] = datetime.fromtimestamp(self.timestamp).isoformat()
        return data


class InsertResult(NamedTuple):
    id: Optional[int]
    duplicate: bool


def safe_makedirs(path):
    """Safely create directories with error handling"""
    try:
        os.makedirs(path, exist_ok=True)
        return True
    except (OSError, PermissionError) as e:
        logger.error(f"Could not create directory {path}: {e}")
        return False


def connect_db(db_file, read_only=False):
    """Open the history database, read-only opens never create the file"""
    try:
        if read_only:
            uri = "file:" + urllib.parse.quote(os.path.abspath(db_file)) + "?mode=ro"
            conn = sqlite3.connect(uri, uri=True)
        else:
            conn = sqlite3.connect(db_file)
    except sqlite3.Error as e:
        logger.error(f"Could not connect to database {db_file}: {e}")
        raise StoreAccessError(f"could not open history database {db_file}: {e}") from e

    try:
        conn.create_function("dh_contains", 2, contains_folded, deterministic=True)
    except sqlite3.Error as e:
        conn.close()
        raise StoreAccessError(f"could not prepare history database {db_file}: {e}") from e
    return conn


class HistoryStore:
    """SQLite backed command history.

    Use as a context manager so the connection is released on every exit
    path:

        with HistoryStore(path, read_only=True) as store:
            entries = store.list_all()
    """

    def __init__(self, db_file, read_only=False):
        self.db_file = db_file
        self.read_only = read_only
        self.conn = connect_db(db_file, read_only=read_only)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self.conn is not None:
            try:
                self.conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Could not close database {self.db_file}: {e}")
            self.conn = None

    def _execute(self, sql, params=()):
        if self.conn is None:
            raise StoreAccessError(f"history database {self.db_file} is closed")
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as e:
            logger.error(f"Query failed on {self.db_file}: {e}")
            raise StoreAccessError(f"history database error: {e}") from e

    def init_schema(self):
        """Create the history table and indexes, then stamp the schema version"""
        try:
            with self.conn:
                for statement in SCHEMA:
                    self.conn.execute(statement)
                self.conn.execute(f'PRAGMA user_version = {SCHEMA_VERSION}')
        except sqlite3.Error as e:
            logger.error(f"Database initialization failed: {e}")
            raise StoreAccessError(f"could not initialize history database: {e}") from e

    def schema_version(self):
        return self._execute('PRAGMA user_version').fetchone()[0]

    def check_schema_version(self):
        """Warn on stderr when the database was created by a different version"""
        current = self.schema_version()
        if current != SCHEMA_VERSION:
            logger.warning(f"Schema version mismatch in {self.db_file}: {current} != {SCHEMA_VERSION}")
            print(f"Warning: database schema version mismatch. Current: {current}, "
                  f"required: {SCHEMA_VERSION}. Run 'dhist init' to update it.",
                  file=sys.stderr)
            return False
        return True

    def list_all(self):
        """All entries, oldest first"""
        cursor = self._execute(f'SELECT {COLUMNS} FROM history ORDER BY id ASC')
        return [HistoryEntry.from_row(row) for row in cursor.fetchall()]

    def list_by_directory(self, directory, limit=None):
        """Entries recorded in directory, newest first"""
        sql = f'SELECT {COLUMNS} FROM history WHERE executing_dir = ? ORDER BY id DESC'
        params = (directory,)
        if limit is not None:
            sql += ' LIMIT ?'
            params += (limit,)
        return [HistoryEntry.from_row(row) for row in self._execute(sql, params).fetchall()]

    def search(self, query):
        """Entries matching a BooleanQuery, evaluated inside SQLite, oldest first"""
        sql_filter = to_sql(query)
        cursor = self._execute(
            f'SELECT {COLUMNS} FROM history WHERE {sql_filter.clause} ORDER BY id ASC',
            sql_filter.params
        )
        return [HistoryEntry.from_row(row) for row in cursor.fetchall()]

    def insert(self, entry):
        cursor = self._execute('''
            INSERT INTO history (command, executed_at, executing_host, executing_dir,
                                 executing_user, tty, sid)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (entry.command, entry.timestamp, entry.hostname, entry.directory,
              entry.username, entry.tty, entry.sid))
        try:
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreAccessError(f"could not save history entry: {e}") from e
        return cursor.lastrowid

    def count_exact(self, command, directory, hostname, username):
        cursor = self._execute('''
            SELECT COUNT(*) FROM history
            WHERE command = ? AND executing_dir = ? AND executing_host = ? AND executing_user = ?
        ''', (command, directory, hostname, username))
        return cursor.fetchone()[0]

    def exists_exact(self, command, directory, hostname, username):
        cursor = self._execute('''
            SELECT 1 FROM history
            WHERE command = ? AND executing_dir = ? AND executing_host = ? AND executing_user = ?
            LIMIT 1
        ''', (command, directory, hostname, username))
        return cursor.fetchone() is not None

    def count(self):
        return self._execute('SELECT COUNT(*) FROM history').fetchone()[0]


def is_duplicate(candidate, store):
    """True if an entry with the same command, directory, host and user exists"""
    return store.exists_exact(*candidate.dedup_key)


def record_command(store, candidate, dedup=True):
    """Insert candidate unless it duplicates an existing entry.

    With dedup off the existence check is not run before inserting; the
    duplicate flag is still reported from the rows present afterwards.
    """
    if dedup:
        if is_duplicate(candidate, store):
            logger.debug(f"Skipping duplicate command {candidate.command!r} in {candidate.directory}")
            return InsertResult(None, True)
        return InsertResult(store.insert(candidate), False)

    new_id = store.insert(candidate)
    return InsertResult(new_id, store.count_exact(*candidate.dedup_key) > 1)
