"""Entry point for the marathon-deployer CLI."""

from __future__ import annotations

import sys
from typing import List, Optional

from .cli import run_cli


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI, reporting configuration problems instead of a traceback."""
    try:
        return run_cli(argv)
    except FileNotFoundError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 2
    except ValueError as exc:
        # invalid configuration values (negative timeout, unknown provider, ...)
        print(f"❌ Invalid configuration: {exc}", file=sys.stderr)
        return 2


def app_main() -> None:
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover
    app_main()
