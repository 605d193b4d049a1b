"""Allow ``python -m copydata``."""

import sys

from .cli import main

sys.exit(main())
