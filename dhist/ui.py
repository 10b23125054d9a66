#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import os
import logging
from datetime import datetime

from prompt_toolkit import Application
from prompt_toolkit.buffer import Buffer
from prompt_toolkit.data_structures import Point
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import HSplit, Layout, Window
from prompt_toolkit.layout.controls import BufferControl, FormattedTextControl
from prompt_toolkit.output import create_output
from prompt_toolkit.styles import Style

logger = logging.getLogger(__name__)

HELP_TEXT = "TAB: cd & cmd    ENTER: cmd    ESC: exit"
DIRECTORY_WIDTH = 20

STYLE = Style.from_dict({
    'help': 'reverse',
    'timestamp': 'ansigray',
    'directory': 'ansicyan',
    'selected': 'reverse bold',
    'empty': 'italic ansigray',
})


def shorten_path(path, max_length, home=None):
    """Abbreviate a directory for display.

        /Users/foo/Documents/bar/baz    -> ~/D/b/baz
        /usr/share/screen/utf8encodings -> /u/s/s/utf8encodings

    Leading components are cut to one letter until the path fits, then
    dropped in favour of a '.../' marker.
    """
    if not path:
        return ""

    clean = os.path.normpath(path)
    if home is None:
        home = os.path.expanduser("~")
    if home and home != os.sep and (clean == home or clean.startswith(home + os.sep)):
        clean = "~" + clean[len(home):]
    if clean == "~":
        return clean

    parts = clean.split(os.sep)
    start = 0
    prefix = ""
    if parts[0] == "":
        prefix = os.sep
        start = 1
    elif parts[0] == "~":
        prefix = "~" + os.sep
        start = 1

    for i in range(start, len(parts) - 1):
        if len(os.sep.join(parts[start:])) < max_length:
            break
        if parts[i]:
            parts[i] = parts[i][0]

    for i in range(start, len(parts) - 1):
        candidate = prefix + os.sep.join(parts[i:])
        if len(candidate) <= max_length:
            return candidate
        prefix = ".../"

    return prefix + parts[-1]


def format_row(entry, selected=False):
    timestamp_str = datetime.fromtimestamp(entry.timestamp).strftime('%Y-%m-%d %H:%M')
    directory = shorten_path(entry.directory, DIRECTORY_WIDTH)
    if selected:
        return [('class:selected', f"{timestamp_str}  {directory:<{DIRECTORY_WIDTH}}  {entry.command}")]
    return [
        ('class:timestamp', timestamp_str),
        ('', '  '),
        ('class:directory', f"{directory:<{DIRECTORY_WIDTH}}"),
        ('', '  '),
        ('', entry.command),
    ]


def build_application(session, input=None, output=None):
    """Create the full screen selector driving a SearchSession"""

    # --- Key Bindings ---
    kb = KeyBindings()

    @kb.add('up')
    @kb.add('c-p')
    def _(event):
        session.move_up()

    @kb.add('down')
    @kb.add('c-n')
    def _(event):
        session.move_down()

    @kb.add('enter')
    def _(event):
        result = session.confirm()
        if result is not None:
            event.app.exit(result=result)

    @kb.add('tab')
    def _(event):
        result = session.confirm_with_directory()
        if result is not None:
            event.app.exit(result=result)

    @kb.add('escape', eager=True)
    @kb.add('c-c', eager=True)
    @kb.add('c-g', eager=True)
    def _(event):
        """Leave without selecting anything."""
        session.cancel()
        event.app.exit(result=None)

    # --- Buffers ---
    search_buffer = Buffer(multiline=False)
    search_buffer.on_text_changed += lambda buff: session.set_query(buff.text)

    # --- Rows ---
    def get_rows():
        if not session.filtered_view:
            return FormattedText([('class:empty', "No matching commands")])
        fragments = []
        for index, entry in enumerate(session.filtered_view):
            if index:
                fragments.append(('', '\n'))
            fragments.extend(format_row(entry, selected=index == session.selected_index))
        return FormattedText(fragments)

    def get_cursor_position():
        return Point(x=0, y=session.selected_index or 0)

    rows_window = Window(
        FormattedTextControl(get_rows, get_cursor_position=get_cursor_position, focusable=False),
        wrap_lines=False
    )

    # --- Layout ---
    input_window = Window(
        BufferControl(buffer=search_buffer),
        get_line_prefix=lambda *args: "Search: ",
        height=1
    )
    layout = Layout(HSplit([
        Window(FormattedTextControl([('class:help', HELP_TEXT)]), height=1),
        rows_window,
        input_window,
    ]), focused_element=input_window)

    return Application(
        layout=layout,
        key_bindings=kb,
        style=STYLE,
        full_screen=True,
        input=input,
        output=output,
    )


def run_search(session, input=None, output=None):
    """Run the selector until the user confirms or cancels; returns the output line or None"""
    if output is None:
        # stdout is usually captured by the shell widget, draw on the terminal instead
        output = create_output(always_prefer_tty=True)
    app = build_application(session, input=input, output=output)
    result = app.run()
    logger.debug(f"Search finished in state {session.state.value}")
    return result
