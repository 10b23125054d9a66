#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#


def affinity_key(entry, current_directory):
    """Sort key: entries from current_directory first, then oldest id first"""
    return (entry.directory != current_directory, entry.id)


def order_entries(entries, current_directory):
    """Return entries ordered for display, newest last within each partition.

    Pure: the input is not modified and only the entries' directory and id
    are consulted.
    """
    return sorted(entries, key=lambda entry: affinity_key(entry, current_directory))
