from __future__ import annotations

import sys

from duscan.cli import main

sys.exit(main())
