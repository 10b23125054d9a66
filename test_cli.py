#!/usr/bin/env python3
"""
Tests for the dhist command line
"""

import io
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stdout, redirect_stderr
from unittest.mock import patch

from dhist import cli
from dhist.config import load_config
from dhist.errors import ConfigError
from dhist.store import HistoryStore

FIXED_CONTEXT = {
    'hostname': 'host1',
    'username': 'u1',
    'tty': '',
    'sid': '',
}


def fake_context(directory=None, tty=None, sid=None):
    return dict(FIXED_CONTEXT, directory=directory or '/a', tty=tty or '', sid=sid or '')


class TestCli(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_file = os.path.join(self.temp_dir, 'db', 'history.db')
        self.config_file = os.path.join(self.temp_dir, 'dhist.toml')
        with open(self.config_file, 'w') as f:
            f.write(f'database_path = "{self.db_file}"\n')
            f.write('current_directory_history_limit = 2\n')
            f.write(f'log_file = "{os.path.join(self.temp_dir, "dhist.log")}"\n')
        self.env_patch = patch.dict(os.environ, {}, clear=False)
        self.env_patch.start()
        os.environ.pop('DHIST_DB', None)
        self.context_patch = patch.object(cli, 'get_process_context', side_effect=fake_context)
        self.context_patch.start()

    def tearDown(self):
        self.context_patch.stop()
        self.env_patch.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def run_cli(self, *argv):
        out = io.StringIO()
        err = io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = cli.main(['--config', self.config_file] + list(argv))
        return code, out.getvalue(), err.getvalue()

    def count(self):
        with HistoryStore(self.db_file, read_only=True) as store:
            return store.count()

    def test_add_creates_database(self):
        code, out, _ = self.run_cli('add', '--', 'git', 'status')
        self.assertEqual(code, 0)
        self.assertEqual(out, "")
        with HistoryStore(self.db_file, read_only=True) as store:
            entries = store.list_all()
        self.assertEqual(entries[0].command, "git status")
        self.assertEqual(entries[0].directory, '/a')
        self.assertEqual(entries[0].hostname, 'host1')

    def test_add_empty_command(self):
        code, _, err = self.run_cli('add', '-v', '--', '   ')
        self.assertEqual(code, 1)
        self.assertIn("Empty command", err)

    def test_add_dedup_and_bypass(self):
        """Identical command, directory, host and user is recorded once unless bypassed"""
        self.run_cli('add', '--', 'ls', '-la')
        code, _, err = self.run_cli('add', '-v', '--', 'ls', '-la')
        self.assertEqual(code, 0)
        self.assertIn("Duplicate", err)
        self.assertEqual(self.count(), 1)

        self.run_cli('add', '-d', '/b', '--', 'ls', '-la')
        self.assertEqual(self.count(), 2)

        self.run_cli('add', '--no-dedup', '--', 'ls', '-la')
        self.assertEqual(self.count(), 3)

    def test_list(self):
        for command in ["git status", "ls -la", "git commit"]:
            self.run_cli('add', '--', command)
        code, out, _ = self.run_cli('list')
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines(), ["git commit", "ls -la", "git status"])

        _, out, _ = self.run_cli('list', '-q', 'git NOT commit')
        self.assertEqual(out.splitlines(), ["git status"])

    def test_history(self):
        self.run_cli('add', '-d', '/a', '--', 'one')
        self.run_cli('add', '-d', '/b', '--', 'two')
        self.run_cli('add', '-d', '/a', '--', 'three')
        self.run_cli('add', '-d', '/a', '--', 'four')
        self.run_cli('add', '-d', '/b', '--', 'five')
        code, out, _ = self.run_cli('history', '-d', '/a')
        self.assertEqual(code, 0)
        # older commands of the current directory still come before other directories
        self.assertEqual(out.splitlines(), ["four", "three", "---", "one", "five", "two"])

    def test_import_history(self):
        history_file = os.path.join(self.temp_dir, 'zsh_history')
        with open(history_file, 'w') as f:
            f.write(": 1700000000:0;git status\n: 1700000001:0;git status\n")
        code, out, _ = self.run_cli('import-history', history_file)
        self.assertEqual(code, 0)
        self.assertIn("Imported 1 commands and skipped 1", out)

        code, out, _ = self.run_cli('import-history', os.path.join(self.temp_dir, 'missing'))
        self.assertEqual(code, 0)
        self.assertIn("not found", out)

    def test_import_csv(self):
        csv_file = os.path.join(self.temp_dir, 'history.csv')
        with open(csv_file, 'w') as f:
            f.write("command,executing_dir\ngit status,/src\n,/src\ngit status,/src\n")
        code, out, _ = self.run_cli('import', '-f', csv_file)
        self.assertEqual(code, 0)
        self.assertIn("Imported 2 commands and skipped 1 empty rows", out)
        self.assertEqual(self.count(), 2)

        code, _, err = self.run_cli('import', '-f', os.path.join(self.temp_dir, 'missing.csv'))
        self.assertEqual(code, 1)
        self.assertIn("could not read CSV file", err)

    def test_import_csv_without_command_column(self):
        csv_file = os.path.join(self.temp_dir, 'bad.csv')
        with open(csv_file, 'w') as f:
            f.write("id,executed_at\n1,2024-01-02T03:04:05Z\n")
        code, _, err = self.run_cli('import', '-f', csv_file)
        self.assertEqual(code, 1)
        self.assertIn("command", err)

    def test_search_missing_database(self):
        code, out, err = self.run_cli('search')
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("Error:", err)

    def test_search_prints_selection(self):
        self.run_cli('add', '--', 'git status')
        with patch('dhist.ui.run_search', return_value="git status") as run_search:
            code, out, _ = self.run_cli('search', '-d', '/a')
        self.assertEqual(code, 0)
        self.assertEqual(out, "git status\n")
        session = run_search.call_args[0][0]
        self.assertEqual(session.current_directory, '/a')

    def test_search_cancelled(self):
        """Cancelling prints nothing and still exits successfully"""
        self.run_cli('add', '--', 'git status')
        with patch('dhist.ui.run_search', return_value=None):
            code, out, _ = self.run_cli('search')
        self.assertEqual(code, 0)
        self.assertEqual(out, "")

    def test_no_subcommand(self):
        code, out, _ = self.run_cli()
        self.assertEqual(code, 2)
        self.assertIn("usage", out)

    def test_init_with_missing_custom_config(self):
        out = io.StringIO()
        err = io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = cli.main(['--config', os.path.join(self.temp_dir, 'missing.toml'), 'init'])
        self.assertEqual(code, 1)
        self.assertIn("cannot open config file", err.getvalue())

    def test_init(self):
        code, out, _ = self.run_cli('init')
        self.assertEqual(code, 0)
        self.assertIn("Initialized database", out)
        self.assertEqual(self.count(), 0)


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_defaults_when_missing(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('DHIST_DB', None)
            config = load_config(os.path.join(self.temp_dir, 'missing.toml'))
        self.assertEqual(config.database_path, os.path.expanduser("~/.dhist.db"))
        self.assertEqual(config.current_directory_history_limit, 5)
        self.assertTrue(config.dedup)

    def test_values_and_env_override(self):
        path = os.path.join(self.temp_dir, 'dhist.toml')
        with open(path, 'w') as f:
            f.write('database_path = "~/other.db"\ndedup = false\n')
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('DHIST_DB', None)
            config = load_config(path)
            self.assertEqual(config.database_path, os.path.expanduser("~/other.db"))
            self.assertFalse(config.dedup)

            os.environ['DHIST_DB'] = os.path.join(self.temp_dir, 'env.db')
            self.assertEqual(load_config(path).database_path, os.path.join(self.temp_dir, 'env.db'))

    def test_invalid_file(self):
        path = os.path.join(self.temp_dir, 'bad.toml')
        with open(path, 'w') as f:
            f.write('database_path = \n')
        with self.assertRaises(ConfigError):
            load_config(path)


if __name__ == '__main__':
    unittest.main()
