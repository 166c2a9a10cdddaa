"""
Execution engine — running commands and carrying their progress.

    from provisioner.core.engine import Command, CommandRunner
"""

from provisioner.core.engine.channel import LogWindow, ProgressChannel
from provisioner.core.engine.command_runner import Command, CommandRunner, EventSink

__all__ = [
    "Command",
    "CommandRunner",
    "EventSink",
    "LogWindow",
    "ProgressChannel",
]
