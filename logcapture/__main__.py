"""Allow ``python -m logcapture`` to record device logs."""

from __future__ import annotations

import sys

from logcapture import run


if __name__ == "__main__":
    sys.exit(run())
