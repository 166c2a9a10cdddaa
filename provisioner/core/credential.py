"""
Privilege credential — the sudo password, held in memory only.

The password is piped to ``sudo -S`` on stdin and never placed in a
command line, an event, a log record, or a file. ``repr()`` and
``str()`` render a fixed placeholder so an accidental ``%s`` in a log
call cannot leak it.
"""

from __future__ import annotations

import os

REDACTED = "***REDACTED***"


class SudoCredential:
    """Opaque wrapper around the sudo password."""

    __slots__ = ("_secret",)

    def __init__(self, secret: str = "") -> None:
        self._secret = secret

    def __repr__(self) -> str:
        return f"SudoCredential({REDACTED})"

    def __str__(self) -> str:
        return REDACTED

    def __bool__(self) -> bool:
        return bool(self._secret)

    def __reduce__(self):
        raise TypeError("SudoCredential cannot be pickled")

    def reveal(self) -> str:
        """The raw secret. Only the command runner's stdin writer calls this."""
        return self._secret

    def stdin_payload(self) -> str:
        """What ``sudo -S`` expects on stdin."""
        return self._secret + "\n"

    @staticmethod
    def running_as_root() -> bool:
        return os.geteuid() == 0
