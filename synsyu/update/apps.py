"""Update runners for Flatpak applications and device firmware.

Both are thin wrappers around the tools' command line interfaces. In dry-run
mode they only list pending updates.
"""

import shutil
import subprocess

import structlog

_log = structlog.get_logger()

FLATPAK_LIST_UPDATES = [
    "flatpak",
    "remote-ls",
    "--updates",
    "--columns=application,branch,origin",
]
FWUPD_LIST_UPDATES = ["fwupdmgr", "get-updates"]


def tool_available(tool: str) -> bool:
    return shutil.which(tool) is not None


def supports_option(tool: str, option: str) -> bool:
    """Checks if `tool --help` mentions `option`."""
    try:
        proc = subprocess.run(
            [tool, "--help"],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
        )
    except OSError:
        return False
    return option in proc.stdout


def _list_output(cmd) -> str:
    """Output of a listing command.

    Whatever the command printed is kept even if it exits non-zero, only a
    missing tool yields an empty string.
    """
    try:
        proc = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
        )
    except OSError:
        return ""
    return proc.stdout.strip()


def _run(cmd) -> int:
    return subprocess.run(cmd, stdin=subprocess.DEVNULL).returncode


def _preview(log, cmd, what):
    updates = _list_output(cmd)
    if not updates:
        log.info(
            "dry-run-no-updates",
            _replace_msg=f"No {what} updates available (dry-run)",
        )
    else:
        log.info(
            "dry-run-pending-updates",
            _replace_msg=f"Pending {what} updates (dry-run):",
            _output=updates,
        )
    return updates


def run_flatpak_updates(log=_log, dry_run=False, recorder=None) -> bool:
    log = log.bind(subsystem="FLATPAK")
    if not tool_available("flatpak"):
        log.warning(
            "flatpak-missing",
            _replace_msg="flatpak not installed; skipping Flatpak updates",
        )
        return True

    if dry_run:
        _preview(log, FLATPAK_LIST_UPDATES, "Flatpak")
        return True

    log.info("flatpak-update-start", _replace_msg="Applying Flatpak updates")
    cmd = ["flatpak", "update"]
    if supports_option("flatpak", "--noninteractive"):
        cmd.append("--noninteractive")
    cmd.append("--assumeyes")

    status = _run(cmd)
    if status == 0:
        log.info("flatpak-update-succeeded")
        return True

    if recorder is not None:
        recorder.record("flatpak", f"flatpak update failed (exit {status})")

    # Older Flatpak versions may choke on --noninteractive.
    log.debug("flatpak-update-retry", status=status)
    status = _run(["flatpak", "update", "--assumeyes"])
    if status == 0:
        log.info("flatpak-update-succeeded", retried=True)
        return True

    if recorder is not None:
        recorder.record("flatpak", f"flatpak update failed (exit {status})")
    log.error(
        "flatpak-update-failed",
        _replace_msg="Flatpak update failed",
        status=status,
    )
    return False


def run_fwupd_updates(log=_log, dry_run=False, recorder=None) -> bool:
    log = log.bind(subsystem="FWUPD")
    if not tool_available("fwupdmgr"):
        log.warning(
            "fwupd-missing",
            _replace_msg="fwupdmgr not installed; skipping firmware updates",
        )
        return True

    if dry_run:
        _preview(log, FWUPD_LIST_UPDATES, "firmware")
        return True

    log.info(
        "fwupd-update-start",
        _replace_msg="Applying firmware updates via fwupdmgr",
    )
    cmd = ["fwupdmgr", "update"]
    if supports_option("fwupdmgr", "--assume-yes"):
        cmd.append("--assume-yes")

    status = _run(cmd)
    if status == 0:
        log.info("fwupd-update-succeeded")
        return True

    if recorder is not None:
        recorder.record("fwupd", f"fwupdmgr update failed (exit {status})")
    log.error(
        "fwupd-update-failed",
        _replace_msg="Firmware update failed",
        status=status,
    )
    return False
