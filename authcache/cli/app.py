"""Main CLI application for authcache diagnostics."""

import logging
import sys
from pathlib import Path
from typing import Annotated

import typer

from authcache import __version__
from authcache.cli.decorators.error_handling import print_stack_trace_if_verbose
from authcache.config.loader import load_settings
from authcache.config.models import AuthCacheSettings, LoggingSettings
from authcache.core.errors import ConfigError
from authcache.core.logging import setup_logging_from_settings


__all__ = ["app", "main", "AppContext"]

logger = logging.getLogger(__name__)


class AppContext:
    """Application context for storing shared state."""

    def __init__(self, verbose: int = 0, config_file: str | None = None):
        """Initialize AppContext.

        Args:
            verbose: Verbosity level
            config_file: Path to configuration file
        """
        self.verbose = verbose
        self.config_file = config_file
        self._settings: AuthCacheSettings | None = None

    @property
    def settings(self) -> AuthCacheSettings:
        """Settings, loaded on first access so errors surface inside commands."""
        if self._settings is None:
            self._settings = load_settings(
                Path(self.config_file) if self.config_file else None
            )
        return self._settings

    def logging_settings(self) -> LoggingSettings:
        """Configured logging section; quiet unless a level is set explicitly.

        A broken configuration falls back to the defaults here. The command
        that reads ``settings`` reports the error.
        """
        try:
            configured = self.settings.logging
        except ConfigError:
            return LoggingSettings(level="WARNING")
        if "level" in configured.model_fields_set:
            return configured
        return configured.model_copy(update={"level": "WARNING"})


app = typer.Typer(
    name="authcache",
    help=f"""authcache diagnostics v{__version__}

Inspect and maintain the durable tier of the authorization cache.

Common workflows:
  • Summarize cache:  authcache cache show
  • List keys:        authcache cache keys --prefix permission:user1:
  • Reclaim space:    authcache cache sweep
  • Show settings:    authcache config show""",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity (-v=INFO, -vv=DEBUG)",
        ),
    ] = 0,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging (equivalent to -vv)"),
    ] = False,
    log_file: Annotated[
        str | None, typer.Option("--log-file", help="Log to file")
    ] = None,
    config_file: Annotated[
        str | None,
        typer.Option("-c", "--config", help="Path to configuration file"),
    ] = None,
    version: Annotated[
        bool, typer.Option("--version", help="Show version and exit")
    ] = False,
) -> None:
    """authcache diagnostics."""
    if version:
        print(f"authcache v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        print(ctx.get_help())
        raise typer.Exit()

    ctx.obj = AppContext(verbose=verbose, config_file=config_file)

    log_level_name = None
    if debug or verbose >= 2:
        log_level_name = "DEBUG"
    elif verbose == 1:
        log_level_name = "INFO"

    setup_logging_from_settings(
        ctx.obj.logging_settings(), log_level_name=log_level_name, log_file=log_file
    )


def main() -> int:
    """Main CLI entry point."""
    from authcache.cli.commands import register_all_commands

    register_all_commands(app)

    try:
        app()
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0
    except Exception as e:
        logger.exception("Unexpected error: %s", e)
        print_stack_trace_if_verbose()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
