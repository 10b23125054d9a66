#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import sys

from dhist.cli import main

sys.exit(main())
