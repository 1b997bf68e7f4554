"""
Chore Ledger — Telegram Bot.

The chat transport: people mention the bot in their household group
("@chorebot 皿洗い") and it records the chore. Private chats work too, in
which case the user's own chat is the house.

Every ledger call runs in a worker thread and finishes before the reply is
sent, so no database connection is held while talking to Telegram.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from telegram import Update
from telegram.constants import ChatType
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.chore_service import ReportRequest, ResponseKind
from src.data.db import StorageError

if TYPE_CHECKING:
    from src.core.chore_service import ChoreService

logger = logging.getLogger(__name__)

CANCEL_WORDS = {"取消", "取り消し", "キャンセル", "cancel"}

HELP_TEXT = "\n".join([
    "How to use:",
    "• @bot 皿洗い — report a chore",
    "• @bot me — your points this week",
    "• @bot top — this week's top 3 (coming soon)",
    "• @bot cancel — undo your last report",
    "• @bot help — this message",
    "• /weight <task> <weight> — set a task's point multiplier for this group",
    "Task names accept kana, kanji and one typo.",
])

FAILURE_TEXT = "Something went wrong. Please try again in a moment."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_points(points: float) -> str:
    """300.0 -> "300pt", 12.5 -> "12.5pt"."""
    if abs(points - round(points)) < 1e-6:
        return f"{round(points):.0f}pt"
    return f"{points:.1f}pt"


def _extract_fields(text: str) -> list[str]:
    """Split a message into words, dropping @mentions."""
    return [f for f in text.split() if not f.startswith("@")]


def _is_group_chat(update: Update) -> bool:
    return update.effective_chat.type in (ChatType.GROUP, ChatType.SUPERGROUP)


def _is_addressed_to_bot(update: Update, bot_username: str | None) -> bool:
    """In groups only messages that mention the bot count; private chats always do."""
    if not _is_group_chat(update):
        return True
    if not bot_username:
        return False
    return f"@{bot_username.lower()}" in (update.message.text or "").lower()


def _house_id(update: Update) -> str:
    return str(update.effective_chat.id)


def _service(context: ContextTypes.DEFAULT_TYPE) -> ChoreService:
    return context.bot_data["service"]


async def _call(func, *args):
    """Run a blocking service call off the event loop, bounded by the report timeout."""
    return await asyncio.wait_for(
        asyncio.to_thread(func, *args), timeout=settings.REPORT_TIMEOUT_SECONDS,
    )


# ---------------------------------------------------------------------------
# Actions shared by keyword messages and slash commands
# ---------------------------------------------------------------------------


async def _reply_report(
    update: Update, context: ContextTypes.DEFAULT_TYPE, fields: list[str],
) -> None:
    task = fields[0]
    option = fields[1] if len(fields) > 1 else None
    user = update.effective_user
    request = ReportRequest(
        group_id=_house_id(update),
        user_id=str(user.id),
        task=task,
        source_msg_id=str(update.message.message_id),
        display_name=user.full_name,
        option=option,
    )

    try:
        response = await _call(_service(context).report, request)
    except (StorageError, asyncio.TimeoutError) as exc:
        logger.error(
            "Report failed: group=%s user=%s msg_id=%s error=%s",
            request.group_id, request.user_id, request.source_msg_id, exc,
        )
        await update.message.reply_text(FAILURE_TEXT)
        return

    if response.kind is ResponseKind.ACCEPTED:
        msg = f"✅ {response.task_key} (+{_format_points(response.points)})"
    elif response.kind is ResponseKind.DUPLICATE:
        msg = "Duplicate: this report is already recorded."
    elif response.kind is ResponseKind.UNKNOWN_TASK:
        msg = f'Unknown: "{task}"'
    elif response.kind is ResponseKind.AMBIGUOUS_TASK:
        msg = f'Unknown: "{task}" Candidates: {"/".join(response.candidates)}'
    else:
        logger.warning("Report rejected: %s", response.message)
        msg = response.message
    await update.message.reply_text(msg)


async def _reply_me(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    group_id = _house_id(update)
    user_id = str(update.effective_user.id)
    try:
        summary = await _call(_service(context).weekly_user_summary, group_id, user_id)
    except (StorageError, asyncio.TimeoutError) as exc:
        logger.error("Summary failed: group=%s user=%s error=%s", group_id, user_id, exc)
        await update.message.reply_text(FAILURE_TEXT)
        return

    if not summary.tasks:
        await update.message.reply_text("You have 0pt this week so far.")
        return

    breakdown = ", ".join(f"{t.task_key}:{_format_points(t.points)}" for t in summary.tasks)
    await update.message.reply_text(
        f"This week: {_format_points(summary.total)} ({breakdown})"
    )


async def _reply_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    group_id = _house_id(update)
    user_id = str(update.effective_user.id)
    try:
        response = await _call(_service(context).cancel_latest, group_id, user_id)
    except (StorageError, asyncio.TimeoutError) as exc:
        logger.error("Cancel failed: group=%s user=%s error=%s", group_id, user_id, exc)
        await update.message.reply_text("Cancel failed. Please try again in a moment.")
        return

    if response.kind is ResponseKind.NO_EVENT:
        await update.message.reply_text("There is no report to cancel.")
        return
    await update.message.reply_text(
        f"Cancelled your last report: {response.deleted.task_key}."
    )


async def _reply_top(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text("This week's ranking is coming soon!")


async def _reply_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(HELP_TEXT)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — register the sender in this house and show help."""
    user = update.effective_user
    try:
        await _call(
            _service(context).register_member, _house_id(update), str(user.id), user.full_name,
        )
    except (StorageError, asyncio.TimeoutError) as exc:
        logger.error("/start registration failed: %s", exc)
    await update.message.reply_text(HELP_TEXT)


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help."""
    await _reply_help(update, context)


async def cmd_me(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /me — points of the sender this week."""
    await _reply_me(update, context)


async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /cancel — undo the sender's last report."""
    await _reply_cancel(update, context)


async def cmd_top(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _reply_top(update, context)


async def cmd_weight(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /weight <task> <weight> — set a category multiplier for this house."""
    args = context.args or []
    if len(args) != 2:
        await update.message.reply_text("Usage: /weight <task> <weight>")
        return

    name, raw_weight = args
    try:
        weight = float(raw_weight)
    except ValueError:
        await update.message.reply_text("Weight must be a number, e.g. /weight 皿洗い 1.5")
        return

    try:
        response = await _call(
            _service(context).update_category_weight, _house_id(update), name, weight,
        )
    except (StorageError, asyncio.TimeoutError) as exc:
        logger.error("/weight failed: %s", exc)
        await update.message.reply_text(FAILURE_TEXT)
        return

    if response.kind is ResponseKind.ACCEPTED:
        await update.message.reply_text(f"✅ {response.message}")
    else:
        await update.message.reply_text(response.message)


# ---------------------------------------------------------------------------
# Message handler
# ---------------------------------------------------------------------------


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text — keyword commands or a chore report."""
    if update.message is None or not update.message.text:
        return
    if not _is_addressed_to_bot(update, context.bot.username):
        return

    fields = _extract_fields(update.message.text)
    if not fields:
        return

    keyword = fields[0].lower()
    if keyword == "me":
        await _reply_me(update, context)
    elif keyword in CANCEL_WORDS:
        await _reply_cancel(update, context)
    elif keyword == "top":
        await _reply_top(update, context)
    elif keyword == "help":
        await _reply_help(update, context)
    else:
        await _reply_report(update, context, fields)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(service: ChoreService | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        service: Chore service. Defaults to one backed by the configured
                 SQLite ledger.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if service is None:
        from src.core.chore_service import ChoreService
        from src.data.db import LedgerDB

        service = ChoreService(LedgerDB())

    app.bot_data["service"] = service

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("me", cmd_me))
    app.add_handler(CommandHandler("cancel", cmd_cancel))
    app.add_handler(CommandHandler("top", cmd_top))
    app.add_handler(CommandHandler("weight", cmd_weight))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    if not settings.TELEGRAM_BOT_TOKEN or settings.TELEGRAM_BOT_TOKEN.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    logger.info("Starting chore ledger bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    main()
