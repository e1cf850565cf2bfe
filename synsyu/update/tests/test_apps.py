import subprocess
from unittest import mock

import pytest
from synsyu.update import apps
from synsyu.update.failures import FailedUpdates

FLATPAK_HELP = """\
Usage:
  flatpak update [OPTION…] [REF…]

  -y, --assumeyes          Automatically answer yes for all questions
  --noninteractive         Produce minimal output and don't ask questions
"""

FWUPD_HELP = """\
Usage:
  fwupdmgr [OPTION…]

  -y, --assume-yes         Answer yes to all questions
"""


def completed(cmd, returncode=0, stdout=""):
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout)


class FakeTools:
    """Stands in for subprocess.run, answering by command line."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        response = self.responses.get(tuple(cmd), (0, ""))
        if isinstance(response, list):
            response = response.pop(0)
        returncode, stdout = response
        return completed(cmd, returncode, stdout)


@pytest.fixture
def tools(monkeypatch):
    def _tools(responses, installed=("flatpak", "fwupdmgr")):
        fake = FakeTools(responses)
        monkeypatch.setattr("subprocess.run", fake)
        monkeypatch.setattr(
            "shutil.which",
            lambda tool: f"/usr/bin/{tool}" if tool in installed else None,
        )
        return fake

    return _tools


@pytest.fixture
def recorder(logger):
    return FailedUpdates(log=logger)


def test_supports_option(tools):
    tools({("flatpak", "--help"): (0, FLATPAK_HELP)})
    assert apps.supports_option("flatpak", "--noninteractive")
    assert not apps.supports_option("flatpak", "--no-such-option")


def test_supports_option_tool_missing(monkeypatch):
    monkeypatch.setattr(
        "subprocess.run", mock.Mock(side_effect=FileNotFoundError)
    )
    assert not apps.supports_option("flatpak", "--noninteractive")


def test_flatpak_missing(log, logger, tools, recorder):
    fake = tools({}, installed=())
    assert apps.run_flatpak_updates(logger, recorder=recorder)
    assert fake.calls == []
    assert log.has("flatpak-missing", level="warning", subsystem="FLATPAK")


def test_flatpak_dry_run_lists_updates(log, logger, tools, recorder):
    listing = "org.gnome.Maps\tstable\tflathub\n"
    fake = tools({tuple(apps.FLATPAK_LIST_UPDATES): (0, listing)})

    assert apps.run_flatpak_updates(logger, dry_run=True, recorder=recorder)

    assert fake.calls == [apps.FLATPAK_LIST_UPDATES]
    assert log.has(
        "dry-run-pending-updates",
        subsystem="FLATPAK",
        _output="org.gnome.Maps\tstable\tflathub",
    )
    assert not recorder


@pytest.mark.parametrize("response", [(0, ""), (0, "\n"), (1, "")])
def test_flatpak_dry_run_nothing_pending(log, logger, tools, response):
    tools({tuple(apps.FLATPAK_LIST_UPDATES): response})
    assert apps.run_flatpak_updates(logger, dry_run=True)
    assert log.has("dry-run-no-updates", subsystem="FLATPAK")


def test_flatpak_update_noninteractive(log, logger, tools, recorder):
    fake = tools({("flatpak", "--help"): (0, FLATPAK_HELP)})

    assert apps.run_flatpak_updates(logger, recorder=recorder)

    assert fake.calls == [
        ["flatpak", "--help"],
        ["flatpak", "update", "--noninteractive", "--assumeyes"],
    ]
    assert log.has("flatpak-update-succeeded")
    assert not recorder


def test_flatpak_update_old_version(logger, tools):
    fake = tools({("flatpak", "--help"): (0, "Usage: flatpak\n")})
    assert apps.run_flatpak_updates(logger)
    assert fake.calls[-1] == ["flatpak", "update", "--assumeyes"]


def test_flatpak_update_fallback_succeeds(log, logger, tools, recorder):
    fake = tools(
        {
            ("flatpak", "--help"): (0, FLATPAK_HELP),
            ("flatpak", "update", "--noninteractive", "--assumeyes"): (1, ""),
        }
    )

    assert apps.run_flatpak_updates(logger, recorder=recorder)

    assert fake.calls[-1] == ["flatpak", "update", "--assumeyes"]
    assert log.has("flatpak-update-succeeded", retried=True)
    assert recorder.failures == [
        ("flatpak", "flatpak update failed (exit 1)")
    ]


def test_flatpak_update_fails(log, logger, tools, recorder):
    tools(
        {
            ("flatpak", "--help"): (0, FLATPAK_HELP),
            ("flatpak", "update", "--noninteractive", "--assumeyes"): (1, ""),
            ("flatpak", "update", "--assumeyes"): (3, ""),
        }
    )

    assert not apps.run_flatpak_updates(logger, recorder=recorder)

    assert log.has("flatpak-update-failed", level="error", status=3)
    assert recorder.failures == [
        ("flatpak", "flatpak update failed (exit 1)"),
        ("flatpak", "flatpak update failed (exit 3)"),
    ]


def test_fwupd_missing(log, logger, tools):
    tools({}, installed=("flatpak",))
    assert apps.run_fwupd_updates(logger)
    assert log.has("fwupd-missing", level="warning", subsystem="FWUPD")


def test_fwupd_dry_run(log, logger, tools):
    listing = "Devices with available updates:\n  UEFI dbx\n"
    fake = tools({tuple(apps.FWUPD_LIST_UPDATES): (0, listing)})

    assert apps.run_fwupd_updates(logger, dry_run=True)

    assert fake.calls == [apps.FWUPD_LIST_UPDATES]
    assert log.has("dry-run-pending-updates", subsystem="FWUPD")


def test_fwupd_dry_run_no_updates(log, logger, tools):
    tools({tuple(apps.FWUPD_LIST_UPDATES): (2, "")})
    assert apps.run_fwupd_updates(logger, dry_run=True)
    assert log.has("dry-run-no-updates", subsystem="FWUPD")


def test_fwupd_dry_run_shows_output_of_failed_listing(log, logger, tools):
    tools({tuple(apps.FWUPD_LIST_UPDATES): (2, "No updatable devices\n")})
    assert apps.run_fwupd_updates(logger, dry_run=True)
    assert log.has(
        "dry-run-pending-updates",
        subsystem="FWUPD",
        _output="No updatable devices",
    )


def test_fwupd_update(logger, tools, recorder):
    fake = tools({("fwupdmgr", "--help"): (0, FWUPD_HELP)})
    assert apps.run_fwupd_updates(logger, recorder=recorder)
    assert fake.calls[-1] == ["fwupdmgr", "update", "--assume-yes"]
    assert not recorder


def test_fwupd_exit_status_2_is_a_failure(log, logger, tools, recorder):
    tools(
        {
            ("fwupdmgr", "--help"): (0, ""),
            ("fwupdmgr", "update"): (2, ""),
        }
    )
    assert not apps.run_fwupd_updates(logger, recorder=recorder)
    assert not log.has("fwupd-update-succeeded")
    assert log.has("fwupd-update-failed", level="error", status=2)
    assert recorder.failures == [("fwupd", "fwupdmgr update failed (exit 2)")]


def test_fwupd_update_fails(log, logger, tools, recorder):
    tools(
        {
            ("fwupdmgr", "--help"): (0, FWUPD_HELP),
            ("fwupdmgr", "update", "--assume-yes"): (1, ""),
        }
    )

    assert not apps.run_fwupd_updates(logger, recorder=recorder)

    assert log.has("fwupd-update-failed", level="error", status=1)
    assert recorder.failures == [("fwupd", "fwupdmgr update failed (exit 1)")]
