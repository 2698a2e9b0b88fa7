"""Utilities (logging, retry, content hashing)"""
from .logging import log, vlog, ok, warn, set_verbose
from .retry import retried
from .file_utils import sha256_file, files_identical

__all__ = [
    "log", "vlog", "ok", "warn", "set_verbose",
    "retried",
    "sha256_file", "files_identical",
]
