"""
Console logging helpers for git-workspace
"""
from datetime import datetime

_verbose = False


def set_verbose(verbose: bool):
    """Set the verbose flag"""
    global _verbose
    _verbose = verbose


def log(msg: str):
    """Print a message prefixed with the wall-clock time"""
    ts = datetime.now().strftime("%H:%M:%S")
    print(f"[{ts}] {msg}", flush=True)


def vlog(msg: str):
    """Log only when -v/--verbose was given"""
    if _verbose:
        log(msg)


def ok(msg: str):
    log(f"✓ {msg}")


def warn(msg: str):
    """Log a warning message"""
    log(f"⚠  {msg}")
