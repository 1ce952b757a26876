import asyncio
import functools
import logging
import sys

from rich.console import Console

console = Console(stderr=True)
logger = logging.getLogger(__name__)


def handle_async_command(async_func):
    """Decorator to run an async CLI command to completion."""
    @functools.wraps(async_func)
    def wrapper(*args, **kwargs):
        try:
            return asyncio.run(async_func(*args, **kwargs))
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            sys.exit(130)
        except Exception as e:
            logger.exception("Unhandled error")
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
    return wrapper
