"""CLI entry point for gwatch: auto-generates default config and starts watching."""

import argparse
import asyncio
import sys
from pathlib import Path

from gwatch import __version__
from gwatch.console import setup_logging
from gwatch.supervisor import supervise
from gwatch_engine.config import CONFIG_NAME, create_default_config
from gwatch_engine.errors import GwatchError


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="gwatch",
        description="Rebuild and rerun a program whenever its sources change.",
        epilog="Examples:\n"
        "  gwatch                        # Auto-create gwatch.toml and start watching\n"
        "  gwatch --config dev.toml      # Use custom config\n"
        "  gwatch --version              # Show version",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-c",
        "--config",
        default=CONFIG_NAME,
        help=f"Path to config file (default: {CONFIG_NAME})",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every filesystem event and process transition",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for gwatch CLI.

    Handles:
    - Argument parsing
    - Auto-creation of gwatch.toml
    - Running the supervisor
    - Error handling and exit codes
    """
    args = parse_args(argv)

    # Resolve config path to absolute path
    config_path = Path(args.config).resolve()

    try:
        if create_default_config(config_path):
            print(f"Created default config at: {config_path}")

        setup_logging(verbose=args.verbose)
        asyncio.run(supervise(config_path))

    except KeyboardInterrupt:
        # Gracefully handle Ctrl+C
        sys.exit(130)
    except (GwatchError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
