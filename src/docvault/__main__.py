"""Allow running the CLI with `python -m docvault`."""

import sys

from docvault.cli import main

sys.exit(main())
