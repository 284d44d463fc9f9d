"""``python -m lead_importer``: import lead spreadsheets from the shell.

Arguments are handed to :func:`lead_importer.cli.main` unchanged; running the
module bare prints the CLI usage and exits with status 2.
"""
from __future__ import annotations

import sys

from .cli import build_parser, main as cli_main


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if args:
        return cli_main(args)
    build_parser(prog="python -m lead_importer").print_help()
    return 2


if __name__ == "__main__":  # pragma: no cover - module entry point
    sys.exit(main())
