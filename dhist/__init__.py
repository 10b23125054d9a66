#
# dhist - directory-aware shell history with incremental search
#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

__version__ = "0.3.0"
