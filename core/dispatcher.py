"""Message stream loop for the key-check bot."""

import asyncio
import logging
from typing import AsyncIterator, Iterable, Optional

from .commands import DEFAULT_PREFIXES, parse_command
from .handlers import HANDLERS, BotContext, HandlerResult
from .models import InboundMessage

log = logging.getLogger(__name__)


class Dispatcher:
    """Consumes inbound messages one at a time and routes commands to handlers.

    A failure while processing one message is logged, answered in the
    conversation when possible, and never ends the loop.
    """

    def __init__(self, ctx: BotContext, *, prefixes: Iterable[str] = DEFAULT_PREFIXES):
        self.ctx = ctx
        self.prefixes = tuple(prefixes)

    def is_ignorable(self, message: Optional[InboundMessage]) -> bool:
        if message is None:
            return True
        if self.ctx.is_self(message.sender_inbox_id):
            return True
        return not message.is_text

    async def run(
        self,
        stream: Optional[AsyncIterator[InboundMessage]] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> int:
        """Drain ``stream`` until it ends or ``stop_event`` is set.

        Returns the number of messages that produced a handler result.
        """

        if stream is None:
            stream = self.ctx.client.stream_all_messages()
        handled = 0
        log.info("Waiting for messages...")
        async for message in stream:
            if stop_event is not None and stop_event.is_set():
                break
            result = await self.process(message)
            if result is not None:
                handled += 1
                log.info("Waiting for messages...")
        return handled

    async def process(self, message: Optional[InboundMessage]) -> Optional[HandlerResult]:
        if self.is_ignorable(message):
            return None

        command = parse_command(message.content, self.prefixes)
        if not command.is_command:
            return None

        target = command.target_value or message.sender_inbox_id
        conversation = None
        try:
            conversation = await self.ctx.call(
                self.ctx.client.get_conversation_by_id(message.conversation_id)
            )
            if conversation is None:
                log.warning(
                    "Unable to find conversation %s, skipping", message.conversation_id
                )
                return None
            log.info("Received command: %s", message.content)
            handler = HANDLERS[command.kind]
            result = await handler(command, message, conversation, self.ctx)
        except Exception as exc:
            log.exception("Error processing command for %s", target)
            result = HandlerResult.failure(
                f"Error processing command: {exc}", target=target, error=exc
            )
            if conversation is None:
                return result

        await self._reply(conversation, result)
        return result

    async def _reply(self, conversation, result: HandlerResult) -> None:
        if not result.reply:
            return
        try:
            await self.ctx.call(conversation.send(result.reply))
        except Exception as exc:
            log.error("Failed to send reply for %s: %s", result.target, exc)
            return
        log.info("Sent %s", result.summary or result.status.value)
