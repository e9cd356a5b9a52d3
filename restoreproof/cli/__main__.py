"""Module execution entrypoint for `python -m restoreproof.cli`."""

from __future__ import annotations

import sys

from restoreproof.cli import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
