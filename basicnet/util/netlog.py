"""
Logging setup for the basicnet library.
"""
import logging
import io
import sys


debug_logging = io.StringIO()  # Global bucket for debug statements.
DEBUG_FORMAT = "%(asctime)s %(levelname)8s [%(process)6d %(module)12s.%(funcName)-12s:%(lineno)4d] %(message)s"
SCREEN_FORMAT = "%(asctime)s | %(message)s"


def setup_logging(name="nnets", level="INFO"):
    log = logging.getLogger(name=name)
    log.handlers = []

    # Log all messages to a global string stream which we can write into our checkpoints.
    handler_debug = logging.StreamHandler(debug_logging)
    handler_debug.setFormatter(logging.Formatter(DEBUG_FORMAT))
    handler_debug.setLevel("DEBUG")
    log.addHandler(handler_debug)

    # Allow modules to have their own debug log, if they want.
    local_debug_logging = io.StringIO()
    local_debug = logging.StreamHandler(local_debug_logging)
    local_debug.setFormatter(logging.Formatter(DEBUG_FORMAT))
    local_debug.setLevel("DEBUG")
    log.addHandler(local_debug)

    # Print "INFO" and above messages to the screen.
    handler_screen = logging.StreamHandler(sys.stdout)
    handler_screen.setFormatter(logging.Formatter(DEBUG_FORMAT if level == "DEBUG" else SCREEN_FORMAT,
                                                  datefmt="%H:%M:%S"))
    handler_screen.setLevel(level)
    handler_screen.set_name("screen")
    log.addHandler(handler_screen)

    log.setLevel("DEBUG")  # Let the logger catch all emits. The handlers have their own levels.
    log.propagate = False

    log.debug_global = debug_logging
    log.debug_local = local_debug_logging

    return log


def set_screen_level(log, level):
    """Change the level of messages which `log` prints to the screen.
    The debug streams keep receiving everything."""
    for handler in log.handlers:
        if handler.get_name() == "screen":
            handler.setLevel(level)


def format_event(event, **fields):
    """Render a structured progress event as a single log line, e.g.
    "event=epoch epoch=3 loss=0.01234".
    Floats are written with five significant digits; keys are sorted
    after the event name so lines are easy to grep.
    """
    parts = ["event={}".format(event)]
    for key in sorted(fields):
        val = fields[key]
        if isinstance(val, float):
            val = "{:.5}".format(val)
        parts.append("{}={}".format(key, val))
    return " ".join(parts)
