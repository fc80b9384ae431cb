"""Allow running as ``python -m dualhttpd``."""

import sys

from dualhttpd.cli import main

sys.exit(main())
