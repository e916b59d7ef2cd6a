"""Allow ``python -m loopback_oauth``."""

import sys

from .cli import main


sys.exit(main())
