"""Allow ``python -m docdeploy``."""

from __future__ import annotations

import sys

from docdeploy.cli import main

sys.exit(main())
