import asyncio
import logging

from telegram import BotCommand, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from duopow.core.assistant import Assistant
from duopow.core.events import COMMAND_DESCRIPTIONS, Command, TextEvent, parse_event

log = logging.getLogger(__name__)


class TelegramTransport:
    def __init__(self, assistant: Assistant, token: str):
        self.assistant = assistant
        self.application = Application.builder().token(token).concurrent_updates(True).build()
        self._register_handlers()
        self._stop_event = asyncio.Event()

    def _register_handlers(self):
        for command in Command:
            self.application.add_handler(CommandHandler(command.value, self.handle_command))
        # Unregistered slash commands still reach the assistant as commands.
        self.application.add_handler(MessageHandler(filters.COMMAND, self.handle_command))
        self.application.add_handler(
            MessageHandler(filters.TEXT & (~filters.COMMAND), self.handle_message)
        )

    async def handle_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        user = update.effective_user
        chat = update.effective_chat
        if not message or not message.text or not user or user.is_bot or not chat:
            return
        await self._dispatch(message, str(chat.id), parse_event(message.text))

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        message = update.effective_message
        user = update.effective_user
        chat = update.effective_chat
        if not message or not message.text or not user or user.is_bot or not chat:
            return
        await self._dispatch(message, str(chat.id), TextEvent(message.text))

    async def _dispatch(self, message, conversation_id: str, event) -> None:
        try:
            result = await self.assistant.handle_event(conversation_id, event)
        except Exception as exc:
            log.exception("Assistant error: %s", exc)
            result = self.assistant.messages.get("failure")
        if result:
            await message.reply_text(result)

    async def _publish_commands(self) -> None:
        commands = [
            BotCommand(command.value, description)
            for command, description in COMMAND_DESCRIPTIONS.items()
        ]
        try:
            await self.application.bot.set_my_commands(commands)
        except Exception as exc:
            log.warning("Failed to publish command list: %s", exc)

    async def start(self):
        await self.application.initialize()
        await self._publish_commands()
        await self.application.start()
        await self.application.updater.start_polling()
        log.info("Telegram transport polling")
        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()

    async def stop(self):
        self._stop_event.set()
