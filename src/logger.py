"""
Simple logging utility for PulsePoint.

Logs all output to both console and file with timestamps.
Minimal implementation - no log levels or configuration.
"""

import sys
import threading
from datetime import datetime, timezone

LOG_FILE = "pulsepoint.log"

# Pipeline workers log from executor threads
_lock = threading.Lock()


def log(message: str, end: str = "\n") -> None:
    """
    Print message to console and append to log file with timestamp.

    Args:
        message: The message to log
        end: Line ending (default newline, matches print() behavior)
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    # Only add timestamp prefix for actual content lines (not empty lines)
    if message.strip():
        log_entry = f"[{timestamp}] {message}{end}"
    else:
        log_entry = f"{message}{end}"

    with _lock:
        print(message, end=end)

        try:
            with open(LOG_FILE, "a", encoding="utf-8") as f:
                f.write(log_entry)
        except IOError as e:
            # Print warning to stderr to avoid interfering with stdout
            print(f"Warning: Failed to write to log file: {e}", file=sys.stderr)


def log_separator() -> None:
    """Log a visual separator line."""
    log("=" * 60)


def log_session_start(name: str = "PulsePoint session") -> None:
    """Log the start of a server or CLI session."""
    log_separator()
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    log(f"{name} started: {timestamp}")
    log_separator()


def log_session_end(name: str = "PulsePoint session") -> None:
    """Log the end of a server or CLI session."""
    log_separator()
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    log(f"{name} ended: {timestamp}")
    log_separator()
    log("")
