"""Entry point wiring configuration, logging and the bulk loading workflow."""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from .config import Options, parse_args, parse_ldj_filename, resolve_options
from .errors import BulkLoadError, ConfigurationError
from .indexer import process_ldj
from .log import setup_logging

logger = logging.getLogger(__name__)


def load_file(path: Path, defaults: Options) -> int:
    """Index one file, deriving index/type/id from its name when no index is set."""

    options = defaults if defaults.index else parse_ldj_filename(path, defaults)
    logger.info("processing %s -> %s/%s", path, options.index, options.doc_type or "_doc")
    with path.open("rb") as handle:
        return process_ldj(handle, options)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns the process exit status."""

    args = parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)
    options = resolve_options(args)

    started = time.time()
    total = 0
    try:
        if not args.files:
            if not options.index:
                raise ConfigurationError("index name required when reading standard input")
            total = process_ldj(sys.stdin.buffer, options)
        else:
            for name in args.files:
                total += load_file(Path(name), options)
    except (BulkLoadError, OSError) as exc:
        logger.error("%s", exc)
        return 1

    logger.info("done: %d documents in %.1fs", total, time.time() - started)
    return 0


__all__ = ["load_file", "main"]
