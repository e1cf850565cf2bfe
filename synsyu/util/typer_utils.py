import os

import rich
import structlog
import typer

import synsyu.util.logging


class SynTyperApp(typer.Typer):
    def __init__(self, command_name, **kwargs):
        # Showing local variables may leak secrets, don't do it in production!
        super().__init__(pretty_exceptions_show_locals=False, **kwargs)
        self.command_name = command_name

    def __call__(self, *args, **kwargs):
        try:
            return super().__call__(*args, **kwargs)
        except Exception as e:
            if not synsyu.util.logging.logging_initialized():
                print(
                    "WARNING: could not log an unhandled exception because "
                    "structured logging has not been initialized."
                )
                raise

            try:
                log = structlog.get_logger()
                log.error(
                    "unhandled-exception",
                    exc_info=True,
                    command=self.command_name,
                )
                synsyu.util.logging.finalize_logging()
            except Exception:
                print("WARNING: logging an unhandled exception failed.")
                raise e

            # Outside of a systemd unit, typer's exception hook pretty-prints
            # the exception for interactive use.
            if not os.environ.get("INVOCATION_ID"):
                raise


def error_exit(message, exit_code):
    rich.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(exit_code)
