"""Command handlers.

Each handler takes ``(command, message, conversation, ctx)`` and returns a
:class:`HandlerResult` describing the single reply to send. Handlers log
their own failures but never send; the dispatcher owns the conversation send.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .commands import CommandKind, ParsedCommand, TargetMode
from .models import InboundMessage
from .report import build_report, format_report, installation_ids, primary_address

log = logging.getLogger(__name__)

ETHEREUM_IDENTIFIER = "ethereum"

HELP_TEXT = (
    "Available commands:\n"
    "/key-check - Check key package status for the sender\n"
    "/key-check inboxid <INBOX_ID> - Check key package status for a specific inbox ID\n"
    "/key-check address <ADDRESS> - Check key package status for a specific address\n"
    "/key-check groupid - Show the current conversation ID\n"
    "/key-check members - List all members' inbox IDs in the current conversation\n"
    "/key-check version - Show XMTP SDK version information\n"
    "/key-check help - Show this help message\n"
    "Note: You can use /kc as a shorthand for all commands (e.g., /kc help)"
)

BOT_MARKER = "~"
SENDER_MARKER = "*"
MEMBERS_LEGEND = (
    "\n ~indicates key-check bot's inbox ID~"
    "\n *indicates who prompted the key-check command*"
)


class CollaboratorTimeout(asyncio.TimeoutError):
    pass


@dataclass
class BotContext:
    """Process-wide state handed to the dispatcher and every handler."""

    client: Any
    inbox_id: str
    sdk_version: str = "unknown"
    call_timeout: Optional[float] = None

    async def call(self, awaitable: Awaitable[Any]) -> Any:
        if not self.call_timeout:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, self.call_timeout)
        except asyncio.TimeoutError as exc:
            raise CollaboratorTimeout(
                f"collaborator call timed out after {self.call_timeout:g}s"
            ) from exc

    def is_self(self, inbox_id: str) -> bool:
        return inbox_id.lower() == self.inbox_id.lower()


class ResultStatus(enum.Enum):
    OK = "ok"
    LOOKUP_MISS = "lookup_miss"
    FAILURE = "failure"


@dataclass
class HandlerResult:
    status: ResultStatus
    reply: Optional[str] = None
    summary: str = ""
    target: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, reply: str, summary: str = "", target: Optional[str] = None) -> "HandlerResult":
        return cls(ResultStatus.OK, reply=reply, summary=summary, target=target)

    @classmethod
    def lookup_miss(cls, reply: str, target: Optional[str] = None) -> "HandlerResult":
        return cls(ResultStatus.LOOKUP_MISS, reply=reply, summary=reply, target=target)

    @classmethod
    def failure(
        cls, reply: str, target: Optional[str] = None, error: Optional[BaseException] = None
    ) -> "HandlerResult":
        return cls(ResultStatus.FAILURE, reply=reply, summary=reply, target=target, error=error)

    @property
    def failed(self) -> bool:
        return self.status is ResultStatus.FAILURE


Handler = Callable[[ParsedCommand, InboundMessage, Any, BotContext], Awaitable[HandlerResult]]


async def handle_help(command, message, conversation, ctx) -> HandlerResult:
    return HandlerResult.ok(HELP_TEXT, summary="help information")


async def handle_group_id(command, message, conversation, ctx) -> HandlerResult:
    return HandlerResult.ok(
        f'Conversation ID: "{message.conversation_id}"',
        summary=f"conversation ID: {message.conversation_id}",
    )


async def handle_version(command, message, conversation, ctx) -> HandlerResult:
    return HandlerResult.ok(
        f"XMTP node-sdk Version: {ctx.sdk_version}",
        summary=f"XMTP node-sdk version: {ctx.sdk_version}",
    )


def member_marker(member_inbox_id: str, sender_inbox_id: str, ctx: BotContext) -> str:
    marker = BOT_MARKER if ctx.is_self(member_inbox_id) else " "
    if member_inbox_id.lower() == sender_inbox_id.lower():
        marker = SENDER_MARKER
    return marker


async def handle_members(command, message, conversation, ctx) -> HandlerResult:
    members = await ctx.call(conversation.members())
    if not members:
        return HandlerResult.ok(
            "No members found in this conversation.",
            summary="no members notice",
        )

    listing = "Group members:\n\n"
    for member in members:
        marker = member_marker(member.inbox_id, message.sender_inbox_id, ctx)
        listing += f"{marker}{member.inbox_id}{marker}\n\n"
    listing += MEMBERS_LEGEND
    return HandlerResult.ok(listing, summary=f"list of {len(members)} members")


async def handle_key_check(command, message, conversation, ctx) -> HandlerResult:
    target_inbox_id = message.sender_inbox_id

    if command.target_mode is TargetMode.BY_INBOX_ID:
        target_inbox_id = command.target_value
        log.info("Looking up inbox ID: %s", target_inbox_id)
    elif command.target_mode is TargetMode.BY_ADDRESS:
        address = command.target_value
        log.info("Looking up address: %s", address)
        try:
            resolved = await ctx.call(
                ctx.client.get_inbox_id_by_identifier(address, ETHEREUM_IDENTIFIER)
            )
        except Exception as exc:
            log.error("Error resolving address %s: %s", address, exc)
            return HandlerResult.failure(
                f"Error resolving address {address}", target=address, error=exc
            )
        if not resolved:
            return HandlerResult.lookup_miss(
                f"No inbox found for address {address}", target=address
            )
        target_inbox_id = resolved

    try:
        states = await ctx.call(
            ctx.client.inbox_state_from_inbox_ids([target_inbox_id], True)
        )
        if not states:
            return HandlerResult.lookup_miss(
                f"No inbox state found for {target_inbox_id}", target=target_inbox_id
            )

        address = primary_address(states)
        statuses = await ctx.call(
            ctx.client.get_key_package_statuses_for_installation_ids(installation_ids(states))
        )
        log.debug("key package statuses for %s: %s", target_inbox_id, statuses)

        report = build_report(target_inbox_id, address, statuses)
        return HandlerResult.ok(
            format_report(report),
            summary=f"key status for {target_inbox_id}",
            target=target_inbox_id,
        )
    except Exception as exc:
        log.error("Error processing key-check for %s: %s", target_inbox_id, exc)
        return HandlerResult.failure(
            f"Error processing key-check: {exc}", target=target_inbox_id, error=exc
        )


HANDLERS: Dict[CommandKind, Handler] = {
    CommandKind.HELP: handle_help,
    CommandKind.GROUP_ID: handle_group_id,
    CommandKind.VERSION: handle_version,
    CommandKind.MEMBERS: handle_members,
    CommandKind.KEY_CHECK: handle_key_check,
}
