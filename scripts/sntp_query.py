#!/usr/bin/env python3
"""Query an SNTP server from a source checkout without installing.

Usage examples:
  - python scripts/sntp_query.py
  - python scripts/sntp_query.py -e time.google.com -t 2
"""

from __future__ import annotations

import sys
from pathlib import Path


# Ensure src is on sys.path for an uninstalled checkout
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sntp_client.app.main import main  # type: ignore  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
