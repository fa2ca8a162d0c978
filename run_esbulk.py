"""Convenience shim to run the bulk loader."""

from __future__ import annotations

import sys

from src.esbulk.runner import main as esbulk_main


if __name__ == "__main__":
    sys.exit(esbulk_main(sys.argv[1:]))
