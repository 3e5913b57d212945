"""Entry point for ``python -m i3mux``."""

import sys

from i3mux.cli.commands import cli_main


if __name__ == "__main__":
    sys.exit(cli_main())
