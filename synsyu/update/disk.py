"""Disk space guards for update runs.

`check_disk_space` runs once before any package is touched and compares the
transient footprint of the whole run (download + build + install) plus a
safety margin against the free space of the filesystem the manifest was
built for. Confirmed insufficient space terminates the run.

`ensure_package_disk_space` repeats the comparison before each package with
that package's own requirements. A package that doesn't fit is skipped, the
run continues.

Missing telemetry and failing free space queries never block: the checks
log a warning and pass.
"""

import enum
import os
import subprocess
from typing import Callable, NamedTuple, Optional

import structlog

from synsyu.update.manifest import read_manifest_metrics
from synsyu.util.constants import (
    DEFAULT_CHECK_PATH,
    EXIT_INSUFFICIENT_DISK_SPACE,
)
from synsyu.util.logging import finalize_logging
from synsyu.util.units import format_bytes, parse_uint

_log = structlog.get_logger()

SUBSYSTEM = "DISK"

FreeSpaceProbe = Callable[[str], Optional[int]]


class CheckStatus(enum.Enum):
    DISABLED = "disabled"
    # Fail-open: telemetry or free space unknown, the run may proceed.
    SKIPPED = "skipped"
    NOTHING_TO_DO = "nothing-to-do"
    PASSED = "passed"
    INSUFFICIENT = "insufficient"


class DiskSpaceCheck(NamedTuple):
    status: CheckStatus
    check_path: Optional[str] = None
    required: int = 0
    margin: int = 0
    available: Optional[int] = None

    @property
    def sufficient(self) -> bool:
        return self.status is not CheckStatus.INSUFFICIENT


class PackageMetrics(NamedTuple):
    download: int = 0
    build: int = 0
    install: int = 0
    transient: int = 0

    @classmethod
    def from_record(cls, record: str) -> "PackageMetrics":
        """Parses `download|build|install|transient`.

        Each field that is not an unsigned integer becomes 0 on its own.
        """
        fields = record.split("|", 3)
        fields += [""] * (4 - len(fields))
        return cls(*(parse_uint(f.strip("\n")) or 0 for f in fields))

    @property
    def has_telemetry(self) -> bool:
        return bool(self.download or self.build or self.install)

    @property
    def required(self) -> int:
        if self.transient > 0:
            return self.transient
        return self.download + self.build + self.install


def df_free_space(path: str) -> Optional[int]:
    """Free bytes on the filesystem holding `path`, as reported by df.

    Uses POSIX output format and 1024 byte blocks. Returns None if df is
    missing, fails or prints something unexpected.
    """
    try:
        proc = subprocess.run(
            ["df", "-Pk", path],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            errors="replace",
        )
    except OSError:
        return None

    lines = proc.stdout.splitlines()
    if len(lines) < 2:
        return None
    columns = lines[1].split()
    if len(columns) < 4:
        return None
    blocks = parse_uint(columns[3])
    if blocks is None:
        return None
    return blocks * 1024


def statvfs_free_space(path: str) -> Optional[int]:
    """Free bytes available to unprivileged users on the filesystem of
    `path`.
    """
    try:
        statvfs = os.statvfs(path)
    except OSError:
        return None
    return statvfs.f_frsize * statvfs.f_bavail


FREE_SPACE_PROBES = {
    "df": df_free_space,
    "statvfs": statvfs_free_space,
}


def free_space_probe(settings) -> FreeSpaceProbe:
    return FREE_SPACE_PROBES[settings.free_space_probe]


def compute_margin(min_free_space_bytes, disk_margin_mb, manifest_margin=0):
    """Safety buffer on top of the transient footprint.

    A margin requested by the manifest can only raise the configured one.
    """
    margin = min_free_space_bytes + disk_margin_mb * 1024 * 1024
    if manifest_margin > margin:
        margin = manifest_margin
    return margin


def _query(probe: FreeSpaceProbe, path: str) -> Optional[int]:
    available = probe(path)
    if isinstance(available, int):
        return parse_uint(available)
    if available is None:
        return None
    return parse_uint(str(available).strip())


def assess_disk_space(
    log, settings, probe=None, reader=read_manifest_metrics
) -> DiskSpaceCheck:
    """Checks if the whole update run fits on disk.

    Does not terminate anything, see `check_disk_space`.
    """
    if not settings.disk_check:
        return DiskSpaceCheck(CheckStatus.DISABLED)

    log = log.bind(subsystem=SUBSYSTEM)
    probe = probe or free_space_probe(settings)

    metrics = reader(settings.manifest_path, log=log)
    if metrics is None:
        log.warning(
            "disk-check-no-metrics",
            _replace_msg="Manifest lacks space metadata; skipping disk check",
            manifest=str(settings.manifest_path),
        )
        return DiskSpaceCheck(CheckStatus.SKIPPED)

    download = parse_uint(metrics.download_size_total)
    build = parse_uint(metrics.build_size_total)
    install = parse_uint(metrics.install_size_total)
    if download is None or build is None or install is None:
        log.warning(
            "disk-check-invalid-metrics",
            _replace_msg="Manifest space metrics invalid; skipping disk check",
            download=metrics.download_size_total,
            build=metrics.build_size_total,
            install=metrics.install_size_total,
        )
        return DiskSpaceCheck(CheckStatus.SKIPPED)

    transient = parse_uint(metrics.transient_size_total)
    if transient is None:
        transient = download + build + install
    if transient == 0:
        log.info(
            "disk-check-nothing-to-do",
            _replace_msg="No updates require disk resources.",
        )
        return DiskSpaceCheck(CheckStatus.NOTHING_TO_DO)

    manifest_margin = parse_uint(metrics.min_free_bytes) or 0
    margin = compute_margin(
        settings.min_free_space_bytes, settings.disk_margin_mb, manifest_margin
    )
    required = transient + margin

    check_path = metrics.space_checked_path or DEFAULT_CHECK_PATH

    available = parse_uint(metrics.available_space_bytes)
    if not available:
        available = _query(probe, check_path)
    if available is None:
        log.warning(
            "disk-check-free-space-unknown",
            _replace_msg="Unable to read available disk space; skipping check",
            path=check_path,
        )
        return DiskSpaceCheck(CheckStatus.SKIPPED, required=required)

    breakdown = (
        f"need {format_bytes(required)} "
        f"(download {format_bytes(download)} + build {format_bytes(build)} "
        f"+ install {format_bytes(install)} + buffer {format_bytes(margin)})"
    )
    details = dict(
        path=check_path,
        required=required,
        available=available,
        download=download,
        build=build,
        install=install,
        margin=margin,
    )

    if available < required:
        log.error(
            "disk-check-insufficient",
            _replace_msg=(
                f"Insufficient space: {breakdown}, "
                f"only {format_bytes(available)} available on "
            )
            + "{path}",
            **details,
        )
        return DiskSpaceCheck(
            CheckStatus.INSUFFICIENT, check_path, required, margin, available
        )

    log.info(
        "disk-check-passed",
        _replace_msg=(
            f"Disk space check passed: {breakdown}, "
            f"have {format_bytes(available)} on "
        )
        + "{path}",
        **details,
    )
    return DiskSpaceCheck(
        CheckStatus.PASSED, check_path, required, margin, available
    )


def check_disk_space(
    log, settings, probe=None, reader=read_manifest_metrics
) -> DiskSpaceCheck:
    """Runs the pre-flight disk check for an update run.

    Terminates the process with EXIT_INSUFFICIENT_DISK_SPACE if the run
    is known not to fit. The returned check carries the path later
    per-package checks must query.
    """
    result = assess_disk_space(log, settings, probe=probe, reader=reader)
    if result.status is CheckStatus.INSUFFICIENT:
        finalize_logging()
        raise SystemExit(EXIT_INSUFFICIENT_DISK_SPACE)
    return result


def ensure_package_disk_space(
    log,
    settings,
    package: str,
    check_path: Optional[str],
    lookup: Callable[[str], str],
    probe=None,
    recorder=None,
) -> bool:
    """Returns False if `package` should be skipped for lack of space."""
    if not settings.disk_check:
        return True

    log = log.bind(subsystem=SUBSYSTEM, package=package)
    probe = probe or free_space_probe(settings)
    check_path = check_path or DEFAULT_CHECK_PATH

    try:
        record = lookup(package)
    except Exception:
        log.debug("package-metrics-lookup-failed", exc_info=True)
        record = ""

    if not record:
        log.warning(
            "package-disk-check-no-metrics",
            _replace_msg=(
                "No manifest metrics available for {package}; "
                "skipping disk verification"
            ),
        )
        return True

    metrics = PackageMetrics.from_record(record)
    if not metrics.has_telemetry:
        log.warning(
            "package-disk-check-no-telemetry",
            _replace_msg=(
                "Package {package} lacks size telemetry; "
                "continuing without disk guard"
            ),
        )
        return True

    margin = compute_margin(
        settings.min_free_space_bytes, settings.disk_margin_mb
    )
    needed = metrics.required + margin

    available = _query(probe, check_path)
    if available is None:
        log.warning(
            "package-disk-check-free-space-unknown",
            _replace_msg=(
                "Unable to assess disk space prior to installing {package}"
            ),
            path=check_path,
        )
        return True

    if available < needed:
        reason = (
            f"requires {format_bytes(needed)} "
            f"(download {format_bytes(metrics.download)}, "
            f"build {format_bytes(metrics.build)}, "
            f"install {format_bytes(metrics.install)}, "
            f"buffer {format_bytes(margin)}) "
            f"but only {format_bytes(available)} available on {check_path}"
        )
        log.error(
            "package-disk-check-insufficient",
            _replace_msg="Skipping {package}: {reason}",
            reason=reason,
            path=check_path,
            required=needed,
            available=available,
            download=metrics.download,
            build=metrics.build,
            install=metrics.install,
            margin=margin,
        )
        if recorder is not None:
            recorder.record(package, f"insufficient disk space: {reason}")
        return False

    log.debug(
        "package-disk-check-passed",
        _replace_msg=(
            f"Sufficient space for {{package}} (need {format_bytes(needed)}, "
            f"available {format_bytes(available)} on "
        )
        + "{path})",
        path=check_path,
        required=needed,
        available=available,
    )
    return True
