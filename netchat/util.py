#!/usr/bin/env python3
"""Logging setup **and** a helper that discovers our outward‑facing IP address."""

from __future__ import annotations
import logging                           # Python stdlib logging framework
import socket                            # Needed for IP detection
import sys                               # For stderr/stdout handles
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional, TextIO

from colorama import Fore, Style, init

__all__ = ["LOG", "configure_logging", "get_local_ip"]

# Shared logger; handlers are attached by configure_logging() (CLI only) so that
# importing the package never touches the filesystem.
LOG = logging.getLogger("netchat")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(message)s"
LOG_DATEFMT = "%H:%M:%S"

# ----------------------------------------------------------------------
# Console formatter: same layout as the file log, level name coloured.
# ----------------------------------------------------------------------

_LEVEL_COLOURS: Dict[int, str] = {
    logging.DEBUG: Fore.BLUE,
    logging.INFO: Fore.GREEN,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Fore.RED + Style.BRIGHT,
}


class ColourFormatter(logging.Formatter):
    """Formatter that wraps the padded level name in an ANSI colour."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        colour = _LEVEL_COLOURS.get(record.levelno)
        if not colour:
            return line
        padded = f"{record.levelname:<8}"
        return line.replace(padded, f"{colour}{padded}{Style.RESET_ALL}", 1)


def configure_logging(
    log_file: Optional[str] = "netchat.log",
    level: int = logging.INFO,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Attach console + rotating file handlers to the "netchat" logger.

    Calling it again only adjusts the level; handlers are registered once.
    ``log_file=None`` disables the file handler.
    """

    LOG.setLevel(level)
    if LOG.handlers:                       # Already configured
        return LOG

    init()                                 # colorama: enable ANSI on Windows consoles

    # ----- Console handler (stdout) -----
    sh = logging.StreamHandler(stream or sys.stdout)
    sh.setFormatter(ColourFormatter(LOG_FORMAT, LOG_DATEFMT))
    LOG.addHandler(sh)

    # ----- Rotating file handler -----
    # Rotates once file hits ±1 MiB, keeps 3 backups ⇒ log ≲ 4 MiB on disk.
    if log_file:
        fh = RotatingFileHandler(
            log_file,
            maxBytes=1_048_576,
            backupCount=3,
            encoding="utf-8",
        )
        fh.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
        LOG.addHandler(fh)

    return LOG

# ----------------------------------------------------------------------
# best‑effort outward IP discovery (no external calls, works offline)
# ----------------------------------------------------------------------

def get_local_ip() -> str:
    """Return the host's primary IP, fallback to 127.0.0.1 on failure."""

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # connect() on a UDP socket sends nothing; it only makes the OS pick
        # the source address it would use for that destination.
        sock.connect(("8.8.8.8", 80))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"                      # Either offline or no NIC
    finally:
        sock.close()
