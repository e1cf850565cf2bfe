"""Structured logging setup for syn-syu commands.

Every event is rendered twice: coloured for the console (filtered by the
verbosity switch) and plain for the log file. Events carry a `subsystem`
key (DISK, FLATPAK, ...) which is shown as a tag in front of the message.
"""

import hashlib
import io
import os
import string
import sys
import traceback
from pathlib import Path
from typing import Optional

import colorama
import structlog

_EVENT_WIDTH = 30  # pad the event name to so many characters

LOG_FILE_NAME = "synsyu.log"

if sys.stdout.isatty():
    RESET_ALL = colorama.Style.RESET_ALL
    BRIGHT = colorama.Style.BRIGHT
    DIM = colorama.Style.DIM
    RED = colorama.Fore.RED
    BACKRED = colorama.Back.RED
    BLUE = colorama.Fore.BLUE
    CYAN = colorama.Fore.CYAN
    MAGENTA = colorama.Fore.MAGENTA
    YELLOW = colorama.Fore.YELLOW
    GREEN = colorama.Fore.GREEN
else:
    RESET_ALL = ""
    BRIGHT = ""
    DIM = ""
    RED = ""
    BACKRED = ""
    BLUE = ""
    CYAN = ""
    MAGENTA = ""
    YELLOW = ""
    GREEN = ""

COLORS = [
    RESET_ALL,
    BRIGHT,
    DIM,
    RED,
    BACKRED,
    BLUE,
    CYAN,
    MAGENTA,
    YELLOW,
    GREEN,
]

_state = {"initialized": False, "log_file": None, "log_path": None}


class PartialFormatter(string.Formatter):
    """
    A string formatter that doesn't break if values are missing or formats
    are wrong. Missing values and bad formats are replaced by a fixed string.

    formatter = PartialFormatter(missing='<missing>')
    formatter.format("{exists} {missing}", exists=1) == "1 <missing>"
    """

    def __init__(self, missing="<missing>", bad_format="<bad format>"):
        self.missing = missing
        self.bad_format = bad_format

    def get_field(self, field_name, args, kwargs):
        try:
            val = super().get_field(field_name, args, kwargs)
        except (KeyError, AttributeError, IndexError):
            val = (None, field_name)
        return val

    def format_field(self, value, format_spec):
        if value is None:
            return self.missing
        try:
            return super().format_field(value, format_spec)
        except ValueError:
            return self.bad_format


class MultiOptimisticLoggerFactory:
    def __init__(self, **factories):
        self.factories = factories

    def __call__(self, *args):
        loggers = {k: f() for k, f in self.factories.items()}
        return MultiOptimisticLogger(loggers)


class MultiOptimisticLogger:
    """
    Distributes rendered messages to multiple loggers. The keys of the
    message dict select the logger. Loggers without a message are skipped,
    errors in sub loggers are ignored.
    """

    def __init__(self, loggers):
        self.loggers = loggers

    def __repr__(self):
        return "<MultiOptimisticLogger {}>".format(list(self.loggers))

    def msg(self, **messages):
        for name, logger in self.loggers.items():
            try:
                line = messages.get(name)
                if line:
                    logger.msg(line)
            except Exception:
                # A broken log target must not stop an update run.
                pass

    def __getattr__(self, name):
        return self.msg


def prefix(prefix, line):
    return "{}>\t".format(prefix) + line.replace(
        "\n", "\n{}>\t".format(prefix)
    )


def _pad(s, length):
    missing = length - len(s)
    return s + " " * (missing if missing > 0 else 0)


class ConsoleFileRenderer:
    """
    Renders `event_dict` aligned and coloured for the console and without
    colours for the log file.
    """

    LEVELS = ["critical", "error", "warn", "warning", "info", "debug"]

    def __init__(self, min_level, pad_event=_EVENT_WIDTH):
        self.min_level = self.LEVELS.index(min_level.lower())
        if sys.stdout.isatty():
            colorama.init()

        self._pad_event = pad_event
        self._level_to_color = {
            "critical": RED,
            "error": RED,
            "warn": YELLOW,
            "warning": YELLOW,
            "info": GREEN,
            "debug": GREEN,
            "notset": BACKRED,
        }
        for key in self._level_to_color.keys():
            self._level_to_color[key] += BRIGHT

    def __call__(self, logger, method_name, event_dict):
        console_io = io.StringIO()
        log_io = io.StringIO()

        def write(line):
            console_io.write(line)
            if RESET_ALL:
                for symbol in COLORS:
                    line = line.replace(symbol, "")
            log_io.write(line)

        replace_msg = event_dict.pop("_replace_msg", None)
        if replace_msg:
            formatted_replace_msg = PartialFormatter().format(
                replace_msg, **event_dict
            )
        else:
            formatted_replace_msg = None

        ts = event_dict.pop("timestamp", None)
        if ts is not None:
            write(DIM + str(ts) + RESET_ALL + " ")

        event_dict.pop("pid", None)

        level = event_dict.pop("level", None)
        if level is not None:
            color = self._level_to_color.get(level, "")
            write(color + level[0].upper() + RESET_ALL + " ")

        subsystem = event_dict.pop("subsystem", None)
        if subsystem is not None:
            write("[" + BLUE + BRIGHT + subsystem + RESET_ALL + "] ")

        event = str(event_dict.pop("event"))
        write(BRIGHT + _pad(event, self._pad_event) + RESET_ALL + " ")

        output = event_dict.pop("_output", None)
        exception_traceback = event_dict.pop("exception_traceback", None)

        if formatted_replace_msg:
            write(formatted_replace_msg)
        else:
            write(
                " ".join(
                    CYAN
                    + key
                    + RESET_ALL
                    + "="
                    + MAGENTA
                    + repr(event_dict[key])
                    + RESET_ALL
                    for key in sorted(event_dict.keys())
                )
            )

        if output is not None:
            write("\n" + DIM + prefix("out", output.rstrip("\n")) + RESET_ALL)

        if exception_traceback is not None:
            write("\n" + prefix("exception", exception_traceback))

        if self.LEVELS.index(method_name.lower()) > self.min_level:
            console_io.seek(0)
            console_io.truncate()

        return {"console": console_io.getvalue(), "file": log_io.getvalue()}


class MultiRenderer:
    """
    Calls multiple renderers with a shallow copy of the event dict and
    merges their messages. Should be placed last in the processor chain.
    """

    def __init__(self, **renderers):
        self.renderers = renderers

    def __repr__(self):
        return "<MultiRenderer {}>".format(list(self.renderers))

    def __call__(self, logger, method_name, event_dict):
        merged_messages = {}
        for renderer in self.renderers.values():
            try:
                messages = renderer(logger, method_name, event_dict.copy())
                merged_messages.update(messages)
            except Exception:
                pass

        return merged_messages


def add_pid(logger, method_name, event_dict):
    event_dict["pid"] = os.getpid()
    return event_dict


def format_exc_info(logger, name, event_dict):
    """Renders exc_info into separate keys for the exception message, class
    and traceback.
    """
    exc_info = event_dict.pop("exc_info", None)
    if not exc_info:
        return event_dict

    if isinstance(exc_info, BaseException):
        exc_info = (exc_info.__class__, exc_info, exc_info.__traceback__)
    elif not isinstance(exc_info, tuple):
        exc_info = sys.exc_info()

    exception_class = exc_info[0]
    if exception_class is None:
        return event_dict

    event_dict["exception_traceback"] = "".join(
        traceback.format_exception(*exc_info)
    )
    event_dict["exception_msg"] = str(exc_info[1])
    event_dict["exception_class"] = (
        exception_class.__module__ + "." + exception_class.__name__
    )
    return event_dict


def logging_initialized():
    return _state["initialized"]


def log_file_path() -> Optional[Path]:
    return _state["log_path"]


def init_logging(
    verbose, logdir=None, log_to_console=True, syslog_identifier="synsyu"
):
    """Configures structlog for a syn-syu command.

    With a `logdir`, everything including debug messages is appended to
    `<logdir>/synsyu/synsyu.log`.
    """
    multi_renderer = MultiRenderer(
        text=ConsoleFileRenderer(min_level="debug" if verbose else "info"),
    )

    processors = [
        add_pid,
        structlog.processors.add_log_level,
        format_exc_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso", utc=False),
        multi_renderer,
    ]

    loggers = {}

    if logdir:
        log_path = Path(logdir) / syslog_identifier / LOG_FILE_NAME
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = open(log_path, "a", encoding="utf-8")
        _state["log_file"] = log_file
        _state["log_path"] = log_path
        loggers["file"] = structlog.PrintLoggerFactory(log_file)

    if log_to_console:
        loggers["console"] = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.BoundLogger,
        logger_factory=MultiOptimisticLoggerFactory(**loggers),
        cache_logger_on_first_use=False,
    )
    _state["initialized"] = True


def write_log_hash(log_path: Path) -> Path:
    """Writes `<log_path>.hash` in sha256sum format and returns its path."""
    digest = hashlib.sha256(log_path.read_bytes()).hexdigest()
    hash_path = log_path.with_name(log_path.name + ".hash")
    hash_path.write_text(f"{digest}  {log_path.name}\n")
    return hash_path


def finalize_logging() -> Optional[Path]:
    """Flushes the log file and seals it with a SHA-256 digest.

    Must be called before a command terminates the process on purpose.
    Returns the path of the hash file or None when no log file is used.
    """
    log_file = _state["log_file"]
    log_path = log_file_path()
    if log_file is None or log_path is None:
        return None
    log_file.flush()
    return write_log_hash(log_path)
