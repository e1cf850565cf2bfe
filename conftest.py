import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--with-system-tools",
        action="store_true",
        default=False,
        dest="with_system_tools",
        help=(
            "Run tests that call real system tools like df. Results depend on "
            "the filesystems of the machine running the tests."
        ),
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "needs_system_tools: calls real df/flatpak/fwupdmgr"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("with_system_tools"):
        return

    skip_tools = pytest.mark.skip(
        reason="needs --with-system-tools option to run"
    )
    for item in items:
        if "needs_system_tools" in item.keywords:
            item.add_marker(skip_tools)
