"""Entry point for ``python -m exchange_portfolio``."""

import sys

from .cli import main


sys.exit(main())
