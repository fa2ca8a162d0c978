"""Configuration helpers for the bulk loading workflow."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from src.secrets import elasticsearch_secrets

from .errors import ConfigurationError

_ES_SECRETS = elasticsearch_secrets()

DEFAULT_SERVER = "http://localhost:9200"
DEFAULT_SERVERS: Tuple[str, ...] = tuple(_ES_SECRETS.get("servers") or [DEFAULT_SERVER])
DEFAULT_USERNAME: Optional[str] = _ES_SECRETS.get("username")
DEFAULT_PASSWORD: Optional[str] = _ES_SECRETS.get("password")
DEFAULT_DOC_TYPE = "default"
DEFAULT_BATCH_SIZE = 1000
DEFAULT_WORKERS = os.cpu_count() or 1
DEFAULT_MAX_RETRIES = 3

REQUEST_TIMEOUT = 60
BACKOFF_BASE_SEC = 1

DELETE_WAIT_MAX_RETRIES = 5
DELETE_WAIT_DELAY_SEC = 1.0

BULK_REFRESH_INTERVAL = "-1"
NORMAL_REFRESH_INTERVAL = "1s"

LDJ_EXTENSION = "ldj"
GZIP_EXTENSION = "gz"


@dataclass(frozen=True)
class Options:
    """Immutable settings for one load run, shared by every worker."""

    servers: Tuple[str, ...] = DEFAULT_SERVERS
    index: str = ""
    doc_type: str = DEFAULT_DOC_TYPE
    batch_size: int = DEFAULT_BATCH_SIZE
    num_workers: int = DEFAULT_WORKERS
    id_field: str = ""
    mapping: str = ""
    purge: bool = False
    zero_replica: bool = False
    gzipped: bool = False
    verbose: bool = False
    username: Optional[str] = DEFAULT_USERNAME
    password: Optional[str] = DEFAULT_PASSWORD
    max_retries: int = DEFAULT_MAX_RETRIES
    request_timeout: float = REQUEST_TIMEOUT
    verify_tls: bool = True

    def validate(self) -> None:
        """Raise ConfigurationError unless the options can drive a run."""

        if not self.index:
            raise ConfigurationError("index name required")
        if not self.servers:
            raise ConfigurationError("at least one server required")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch size must be at least 1, got {self.batch_size}")
        if self.num_workers < 1:
            raise ConfigurationError(f"number of workers must be at least 1, got {self.num_workers}")
        if self.max_retries < 1:
            raise ConfigurationError(f"max retries must be at least 1, got {self.max_retries}")

    def describe(self) -> str:
        """Return a loggable summary with the password masked."""

        password = "***" if self.password else None
        return repr(replace(self, password=password))


def parse_user(value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split ``name:password`` into its parts; a bare name has no password."""

    if not value:
        return None, None
    if ":" not in value:
        return value, None
    username, password = value.split(":", 1)
    return username or None, password or None


def parse_ldj_filename(path: str | Path, defaults: Options) -> Options:
    """Derive index, type and id field from ``[idfield.]type.index.ldj[.gz]``."""

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"failed to load {str(path)!r} as it does not exist")

    tokens = path.name.split(".")
    gzipped = defaults.gzipped
    if tokens and tokens[-1] == GZIP_EXTENSION:
        tokens = tokens[:-1]
        gzipped = True
    if len(tokens) < 2 or tokens[-1] != LDJ_EXTENSION:
        raise ConfigurationError(f"failed to load {str(path)!r} as it is not LDJ file")

    tokens = tokens[:-1]
    if len(tokens) == 3:
        id_field, doc_type, index = tokens
        return replace(defaults, index=index, doc_type=doc_type, id_field=id_field, gzipped=gzipped)
    if len(tokens) == 2:
        doc_type, index = tokens
        return replace(defaults, index=index, doc_type=doc_type, gzipped=gzipped)
    raise ConfigurationError(f"failed to parse source LDJ file {str(path)!r}")


def build_arg_parser() -> argparse.ArgumentParser:
    """Return the CLI parser used by the bulk loading entry point."""

    parser = argparse.ArgumentParser(
        prog="esbulk",
        description="Bulk index newline-delimited JSON into Elasticsearch.",
    )
    parser.add_argument("files", nargs="*", help="LDJ files; standard input when omitted")
    parser.add_argument(
        "--server",
        dest="servers",
        action="append",
        help=f"Elasticsearch base URL, repeatable (default: {', '.join(DEFAULT_SERVERS)})",
    )
    parser.add_argument("--index", default="", help="target index; derived from the filename when omitted")
    parser.add_argument("--type", dest="doc_type", default=None, help="document type")
    parser.add_argument("--id", dest="id_field", default=None, help="id field(s), comma separated, dots for nesting")
    parser.add_argument("-w", "--workers", type=int, default=DEFAULT_WORKERS)
    parser.add_argument("--size", type=int, default=DEFAULT_BATCH_SIZE, help="documents per bulk request")
    parser.add_argument("--mapping", default="", help="mapping as inline JSON or a file path")
    parser.add_argument("--purge", action="store_true", help="delete the index before loading")
    parser.add_argument(
        "-0",
        "--zero-replica",
        action="store_true",
        help="set number_of_replicas to 0 while loading",
    )
    parser.add_argument("-z", "--gzip", action="store_true", help="input is gzip compressed")
    parser.add_argument("-u", "--user", default=None, help="basic auth as name:password")
    parser.add_argument("--max-retries", type=int, default=DEFAULT_MAX_RETRIES)
    parser.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT)
    parser.add_argument("--insecure", action="store_true", help="skip TLS certificate verification")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--log-file", default=None)
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments; accepts argv overrides for testing."""

    parser = build_arg_parser()
    return parser.parse_args(argv)


def resolve_options(args: argparse.Namespace) -> Options:
    """Build the run options from parsed arguments and local secrets."""

    username, password = parse_user(args.user)
    servers: Sequence[str] = args.servers or DEFAULT_SERVERS
    return Options(
        servers=tuple(server.rstrip("/") for server in servers),
        index=args.index or "",
        doc_type=DEFAULT_DOC_TYPE if args.doc_type is None else args.doc_type,
        batch_size=int(args.size),
        num_workers=int(args.workers),
        id_field=args.id_field or "",
        mapping=args.mapping or "",
        purge=bool(args.purge),
        zero_replica=bool(args.zero_replica),
        gzipped=bool(args.gzip),
        verbose=bool(args.verbose),
        username=username or DEFAULT_USERNAME,
        password=password or DEFAULT_PASSWORD,
        max_retries=int(args.max_retries),
        request_timeout=float(args.timeout),
        verify_tls=not args.insecure,
    )


__all__ = [
    "DEFAULT_SERVER",
    "DEFAULT_SERVERS",
    "DEFAULT_DOC_TYPE",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_WORKERS",
    "DEFAULT_MAX_RETRIES",
    "REQUEST_TIMEOUT",
    "BACKOFF_BASE_SEC",
    "DELETE_WAIT_MAX_RETRIES",
    "DELETE_WAIT_DELAY_SEC",
    "BULK_REFRESH_INTERVAL",
    "NORMAL_REFRESH_INTERVAL",
    "Options",
    "parse_user",
    "parse_ldj_filename",
    "build_arg_parser",
    "parse_args",
    "resolve_options",
]
