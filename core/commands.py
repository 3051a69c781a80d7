"""Parsing of `/key-check` command text."""

import enum
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

DEFAULT_PREFIXES: Tuple[str, ...] = ("/key-check", "/kc")

_WHITESPACE = re.compile(r"\s+")


class CommandKind(enum.Enum):
    NONE = "none"
    HELP = "help"
    GROUP_ID = "groupid"
    VERSION = "version"
    MEMBERS = "members"
    KEY_CHECK = "key-check"


class TargetMode(enum.Enum):
    SELF = "self"
    BY_INBOX_ID = "inboxid"
    BY_ADDRESS = "address"


@dataclass(frozen=True)
class ParsedCommand:
    kind: CommandKind
    target_mode: TargetMode = TargetMode.SELF
    target_value: Optional[str] = None

    @property
    def is_command(self) -> bool:
        return self.kind is not CommandKind.NONE


NOT_A_COMMAND = ParsedCommand(CommandKind.NONE)

_SIMPLE_SUBCOMMANDS = {
    "help": CommandKind.HELP,
    "groupid": CommandKind.GROUP_ID,
    "version": CommandKind.VERSION,
    "members": CommandKind.MEMBERS,
}

_TARGET_SUBCOMMANDS = {
    "inboxid": TargetMode.BY_INBOX_ID,
    "address": TargetMode.BY_ADDRESS,
}


def parse_command(raw: str, prefixes: Iterable[str] = DEFAULT_PREFIXES) -> ParsedCommand:
    """Map message text to a command.

    Never raises. Text that does not start with one of ``prefixes`` is
    ``NOT_A_COMMAND``; unknown subcommands, and ``inboxid``/``address``
    without an argument, fall back to a key check of the sender.
    """

    if not isinstance(raw, str):
        return NOT_A_COMMAND
    text = raw.strip()
    if not any(text.startswith(prefix) for prefix in prefixes):
        return NOT_A_COMMAND

    parts = _WHITESPACE.split(text)
    subcommand = parts[1] if len(parts) > 1 else ""

    kind = _SIMPLE_SUBCOMMANDS.get(subcommand)
    if kind is not None:
        return ParsedCommand(kind)

    mode = _TARGET_SUBCOMMANDS.get(subcommand)
    if mode is not None and len(parts) > 2:
        return ParsedCommand(CommandKind.KEY_CHECK, mode, parts[2])

    return ParsedCommand(CommandKind.KEY_CHECK)
