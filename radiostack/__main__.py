"""Allow ``python -m radiostack``."""

import sys

from radiostack.cli import main

sys.exit(main())
