"""Resource metrics recorded in the update manifest.

The manifest is written by the manifest builder before an update run. Its
`metadata` block sums up the disk space the pending updates need, and
`packages` has an entry per package with the sizes of the selected source.
Everything read here is untrusted: values which are missing, non-numeric or
negative count as 0.
"""

import json
import math
from dataclasses import astuple, dataclass
from pathlib import Path
from typing import Optional

import structlog

_log = structlog.get_logger()


def to_int(value) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    if isinstance(value, (int, float)):
        if value < 0:
            return 0
        return int(value)
    return 0


def _raw_field(value) -> str:
    """Text form of a package size as given by the manifest.

    Numbers are truncated to int text, anything else passes through so the
    consumer decides how to treat it.
    """
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float):
        return str(int(value)) if math.isfinite(value) else ""
    return str(value)


@dataclass(frozen=True)
class ManifestMetrics:
    download_size_total: int = 0
    build_size_total: int = 0
    install_size_total: int = 0
    transient_size_total: int = 0
    min_free_bytes: int = 0
    available_space_bytes: int = 0
    space_checked_path: str = ""

    @classmethod
    def from_metadata(cls, metadata: dict) -> "ManifestMetrics":
        download = to_int(metadata.get("download_size_total"))
        build = to_int(metadata.get("build_size_total"))
        install = to_int(metadata.get("install_size_total"))
        transient = to_int(metadata.get("transient_size_total"))
        if transient == 0:
            transient = download + build + install
        path = metadata.get("space_checked_path") or ""

        return cls(
            download_size_total=download,
            build_size_total=build,
            install_size_total=install,
            transient_size_total=transient,
            min_free_bytes=to_int(metadata.get("min_free_bytes")),
            available_space_bytes=to_int(
                metadata.get("available_space_bytes")
            ),
            space_checked_path=str(path),
        )

    def to_record(self) -> str:
        """download|build|install|transient|margin|available|path"""
        return "|".join(str(field) for field in astuple(self))


def load_manifest(path: Path, log=_log) -> Optional[dict]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        log.debug("manifest-not-found", manifest=str(path))
        return None
    except (OSError, ValueError) as e:
        log.debug("manifest-unreadable", manifest=str(path), error=str(e))
        return None

    if not isinstance(data, dict):
        log.debug("manifest-not-an-object", manifest=str(path))
        return None

    return data


def read_manifest_metrics(path: Path, log=_log) -> Optional[ManifestMetrics]:
    """Returns the space metrics of the manifest at `path`.

    Returns None if the manifest can't be read or its metadata block is not
    an object. A manifest without metadata yields all-zero metrics.
    """
    data = load_manifest(path, log)
    if data is None:
        return None

    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        log.debug("manifest-metadata-invalid", manifest=str(path))
        return None

    return ManifestMetrics.from_metadata(metadata)


def manifest_metrics_record(path: Path, log=_log) -> str:
    metrics = read_manifest_metrics(path, log)
    if metrics is None:
        return ""
    return metrics.to_record()


class ManifestPackageLookup:
    """Looks up the size requirements of a single package in the manifest.

    Calling the lookup with a package name returns the record
    `download|build|install|transient` or an empty string if the package is
    unknown. The manifest is read once, on the first lookup.
    """

    def __init__(self, manifest_path: Path, log=_log):
        self.manifest_path = manifest_path
        self.log = log
        self._packages = None

    @property
    def packages(self) -> dict:
        if self._packages is None:
            data = load_manifest(self.manifest_path, self.log) or {}
            packages = data.get("packages") or {}
            self._packages = packages if isinstance(packages, dict) else {}
        return self._packages

    def __call__(self, package: str) -> str:
        entry = self.packages.get(package)
        if not isinstance(entry, dict):
            return ""

        download = entry.get("download_size_selected")
        if download is None:
            download = entry.get("download_size")
        install = entry.get("installed_size_selected")
        if install is None:
            install = entry.get("install_size")

        fields = [
            download,
            entry.get("build_size"),
            install,
            entry.get("transient_size"),
        ]
        return "|".join(_raw_field(f) for f in fields)
