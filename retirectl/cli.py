import logging
import sys

import typer

from retirectl.commands import retire
from retirectl.logging import setup_logging

app = typer.Typer()

# Global debug flag
debug_mode = False

# Add all command groups
app.add_typer(retire.app, name="retire")


# Global options callback
@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """RetireCTL - rolling node retirement for Kubernetes node pools."""
    global debug_mode
    debug_mode = debug
    ctx.obj = {"debug": debug}
    setup_logging(debug)
    if debug:
        logging.debug("Debug mode enabled")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
