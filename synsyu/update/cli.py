from pathlib import Path
from typing import List, NamedTuple, Optional

import structlog
from typer import Argument, Exit, Option

import synsyu.util.logging
from synsyu.update import apps, disk
from synsyu.update.failures import FailedUpdates
from synsyu.update.manifest import (
    ManifestPackageLookup,
    manifest_metrics_record,
)
from synsyu.util.config import ConfigError, load_settings
from synsyu.util.constants import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_LOGDIR,
    EXIT_CONFIG_ERROR,
    EXIT_UPDATE_FAILED,
)
from synsyu.util.typer_utils import SynTyperApp, error_exit


class Context(NamedTuple):
    config_file: Path
    logdir: Optional[Path]
    verbose: bool
    overrides: dict


context: Context


app = SynTyperApp("syn-syu")


def init(log_to_console=True):
    """Sets up logging and loads settings for a sub command."""
    synsyu.util.logging.init_logging(
        context.verbose, context.logdir, log_to_console=log_to_console
    )
    log = structlog.get_logger()
    try:
        settings = load_settings(log, context.config_file, **context.overrides)
    except ConfigError as e:
        log.error(
            "config-invalid",
            _replace_msg="Invalid configuration: {key}: {msg}",
            subsystem="CONFIG",
            key=e.key,
            value=e.value,
            msg=e.msg,
        )
        raise Exit(EXIT_CONFIG_ERROR)
    return log, settings


@app.command()
def check_disk():
    """Checks if the pending updates fit on disk.

    Exits with status 421 if they don't.
    """
    log, settings = init()
    result = disk.check_disk_space(log, settings)
    log.debug("check-disk-finished", status=result.status.value)


@app.command()
def check_packages(
    packages: List[str] = Argument(..., help="Packages to check."),
):
    """Checks each package against the free space left on disk.

    Runs the pre-flight check for the whole update first. Exits with status
    1 if at least one package would have to be skipped.
    """
    log, settings = init()
    recorder = FailedUpdates(settings.failure_log, log=log)
    result = disk.check_disk_space(log, settings)
    lookup = ManifestPackageLookup(settings.manifest_path, log=log)

    skipped = [
        package
        for package in packages
        if not disk.ensure_package_disk_space(
            log,
            settings,
            package,
            check_path=result.check_path,
            lookup=lookup,
            recorder=recorder,
        )
    ]

    if skipped:
        log.error(
            "check-packages-skipped",
            _replace_msg="{count} package(s) lack disk space: {packages}",
            count=len(skipped),
            packages=" ".join(skipped),
        )
        raise Exit(EXIT_UPDATE_FAILED)

    log.info(
        "check-packages-ok",
        _replace_msg="All {count} package(s) fit on disk.",
        count=len(packages),
    )


@app.command()
def metrics():
    """Prints the space metrics of the manifest as a pipe-separated record:
    download|build|install|transient|margin|available|path
    """
    log, settings = init(log_to_console=context.verbose)
    record = manifest_metrics_record(settings.manifest_path, log=log)
    if not record:
        error_exit(
            f"no space metrics in {settings.manifest_path}", EXIT_UPDATE_FAILED
        )
    print(record)


def _run_app_updaters(runners):
    log, settings = init()
    recorder = FailedUpdates(settings.failure_log, log=log)
    ok = True
    for runner in runners:
        ok &= runner(log=log, dry_run=settings.dry_run, recorder=recorder)

    if recorder:
        recorder.summary()
    if not ok:
        raise Exit(EXIT_UPDATE_FAILED)


@app.command()
def flatpak():
    """Applies Flatpak updates (lists them with --dry-run)."""
    _run_app_updaters([apps.run_flatpak_updates])


@app.command()
def fwupd():
    """Applies firmware updates (lists them with --dry-run)."""
    _run_app_updaters([apps.run_fwupd_updates])


@app.command(name="apps")
def apps_cmd():
    """Applies Flatpak and firmware updates."""
    _run_app_updaters([apps.run_flatpak_updates, apps.run_fwupd_updates])


@app.callback(no_args_is_help=True)
def syn_syu(
    verbose: bool = Option(
        False,
        "--verbose",
        "-v",
        help=(
            "Show debug logging output. By default, only info and higher "
            "levels are shown."
        ),
    ),
    config_file: Path = Option(
        DEFAULT_CONFIG_FILE,
        dir_okay=False,
        help="Path to the config file.",
    ),
    logdir: Optional[Path] = Option(
        DEFAULT_LOGDIR,
        file_okay=False,
        help="Directory for log files, gets a synsyu subdirectory.",
    ),
    no_logfile: bool = Option(
        False,
        "--no-logfile",
        help="Only log to the console.",
    ),
    manifest: Optional[Path] = Option(
        None,
        dir_okay=False,
        help="Manifest to read space requirements from.",
    ),
    dry_run: Optional[bool] = Option(
        None,
        "--dry-run/--apply",
        help="Only show pending application updates.",
    ),
    disk_check: Optional[bool] = Option(
        None,
        "--disk-check/--no-disk-check",
        help="Enable or disable the disk space guards.",
    ),
    free_space_probe: Optional[str] = Option(
        None,
        help="How to query free space: df or statvfs.",
    ),
):
    """
    Disk space guards and application updaters for Syn-Syu update runs.
    Command line options take precedence over the config file.
    """
    global context

    context = Context(
        config_file=config_file,
        logdir=None if no_logfile else logdir,
        verbose=verbose,
        overrides=dict(
            manifest_path=manifest,
            dry_run=dry_run,
            disk_check=disk_check,
            free_space_probe=free_space_probe,
        ),
    )

