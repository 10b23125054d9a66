#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import os
import enum
import shlex
import logging

from dhist.ordering import order_entries
from dhist.query import compile_query, parse_or_fallback

logger = logging.getLogger(__name__)


class State(enum.Enum):
    LOADING = 'loading'
    READY = 'ready'
    FILTERING = 'filtering'
    SELECTED = 'selected'
    CANCELLED = 'cancelled'


TERMINAL_STATES = (State.SELECTED, State.CANCELLED)


def filter_entries(entries, raw_query, current_directory):
    """Parse raw_query (falling back to a literal match), filter and order entries"""
    predicate = compile_query(parse_or_fallback(raw_query))
    return order_entries([entry for entry in entries if predicate(entry)], current_directory)


def cd_command(entry):
    return f"cd {shlex.quote(entry.directory)}; {entry.command}"


class SearchSession:
    """Filter-as-you-type controller over a snapshot of history entries.

    The snapshot is ordered once; every query change recomputes the
    filtered view from it without going back to the store. The selection
    starts on the last row, which is the newest entry.
    """

    def __init__(self, entries, current_directory):
        self.state = State.LOADING
        self.current_directory = current_directory
        self.full_snapshot = tuple(order_entries(entries, current_directory))
        self.query_text = ""
        self.filtered_view = self.full_snapshot
        self.selected_index = None
        self.result = None
        self._reset_selection()
        self.state = State.READY

    @classmethod
    def load(cls, store, current_directory=None):
        """Start a session from the store. StoreAccessError propagates."""
        if not current_directory:
            current_directory = os.getcwd()
        entries = store.list_all()
        logger.debug(f"Loaded {len(entries)} entries for search in {current_directory}")
        return cls(entries, current_directory)

    @property
    def finished(self):
        return self.state in TERMINAL_STATES

    @property
    def selected_entry(self):
        if self.selected_index is None:
            return None
        return self.filtered_view[self.selected_index]

    def _reset_selection(self):
        self.selected_index = len(self.filtered_view) - 1 if self.filtered_view else None

    def compute_view(self, text):
        if text == "":
            return self.full_snapshot
        return tuple(filter_entries(self.full_snapshot, text, self.current_directory))

    def set_query(self, text):
        """Recompute the filtered view for new query buffer contents"""
        if self.finished:
            logger.warning(f"Ignoring query change in finished session ({self.state.value})")
            return self.filtered_view

        self.state = State.FILTERING
        self.query_text = text
        try:
            self.filtered_view = self.compute_view(text)
        except Exception as e:
            logger.error(f"Could not filter history for {text!r}: {e}")
            self.filtered_view = ()
        self._reset_selection()
        self.state = State.READY
        return self.filtered_view

    def move_up(self):
        if self.selected_index is not None and self.selected_index > 0:
            self.selected_index -= 1

    def move_down(self):
        if self.selected_index is not None and self.selected_index < len(self.filtered_view) - 1:
            self.selected_index += 1

    def _finish(self, output):
        self.result = output
        self.state = State.SELECTED
        return output

    def confirm(self):
        """Select the highlighted command. Returns None if nothing is selected."""
        entry = self.selected_entry
        if self.finished or entry is None:
            return None
        return self._finish(entry.command)

    def confirm_with_directory(self):
        """Select the highlighted command prefixed with a cd to its directory"""
        entry = self.selected_entry
        if self.finished or entry is None:
            return None
        return self._finish(cd_command(entry))

    def cancel(self):
        if not self.finished:
            self.result = None
            self.state = State.CANCELLED
