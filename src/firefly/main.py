"""Firefly entry point."""

import asyncio
import logging
import sys

from dotenv import find_dotenv, load_dotenv

from .cli import run_cli


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    if len(sys.argv) > 1 and sys.argv[1] == "memory":
        from .memory.cli import run_memory_cli

        # Pass remaining args (after 'memory') to the memory CLI
        sys.exit(run_memory_cli(sys.argv[2:]))

    asyncio.run(run_cli())


if __name__ == "__main__":
    main()
