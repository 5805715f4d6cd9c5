"""Entry point for linescan_app."""

from __future__ import annotations

from linescan_app.cli import main as cli_main


def main() -> None:
    raise SystemExit(cli_main())


if __name__ == "__main__":
    main()
