"""
Command registry.

Commands are registered explicitly at startup with a handler and a one-line
description; a command that was never registered fails fast with the list of
available ones. Handlers receive the decoded command payload (a dict).
"""

import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Set

COMMAND_NAME = re.compile(r"^[a-z][a-z0-9_]*$")


class CommandNotAvailableError(Exception):
    """Raised when attempting to execute an unregistered command"""
    pass


@dataclass(frozen=True)
class RegisteredCommand:
    name: str
    handler: Callable[..., Any]
    description: str


class CommandRegistry:
    """
    Example:
        registry = CommandRegistry()
        registry.register('disable_detection', service._handle_disable_detection,
                          "Stop local inference")
        registry.execute('disable_detection', {"command": "disable_detection"})
    """

    def __init__(self):
        self._commands: Mapping[str, RegisteredCommand] = {}
        self._lock = threading.Lock()

    def register(self, command: str, handler: Callable[..., Any], description: str) -> None:
        """
        Raises:
            ValueError: Duplicate command, or a name that is not snake_case
        """
        if not COMMAND_NAME.match(command or ""):
            raise ValueError(f"Invalid command name: {command!r}")

        with self._lock:
            if command in self._commands:
                raise ValueError(f"Command '{command}' already registered")
            # copy-on-write: execute() reads without the lock
            self._commands = {**self._commands, command: RegisteredCommand(command, handler, description)}

    def execute(self, command: str, command_data: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run a command's handler with the payload (no argument when None).

        Raises:
            CommandNotAvailableError: If command not registered
        """
        entry = self._commands.get(command)
        if entry is None:
            raise CommandNotAvailableError(
                f"Command '{command}' not available. "
                f"Available commands: {', '.join(sorted(self._commands))}"
            )
        if command_data is None:
            return entry.handler()
        return entry.handler(command_data)

    def is_available(self, command: str) -> bool:
        return command in self._commands

    @property
    def available_commands(self) -> Set[str]:
        return set(self._commands)

    def get_help(self) -> Dict[str, str]:
        return {name: entry.description for name, entry in sorted(self._commands.items())}

    def count(self) -> int:
        return len(self._commands)
