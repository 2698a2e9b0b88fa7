"""Core functionality (git wrapper, skip-worktree transaction)"""
from . import git
from .transaction import SkipWorktreeTransaction, with_transaction

__all__ = ["git", "SkipWorktreeTransaction", "with_transaction"]
