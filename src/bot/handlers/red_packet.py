# coding: utf-8
"""
Handlers for lucky money: creation commands and dialogue, grab/detail/
refresh/revoke buttons, history, menu and rankings

Callback data tokens:
    rp:grab:<packet_id>     rp:detail:<packet_id>
    rp:refresh:<packet_id>  rp:revoke:<packet_id>
    rp:history  rp:send  rp:confirm  rp:cancel  rp:menu
"""
from html import escape
from typing import Any, Dict, Optional

from aiogram import F, Router
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message
from loguru import logger

from config.config import CURRENCY
from config.sentry import add_breadcrumb, set_packet_context
from src.core.enums import (
    ClaimOutcome,
    ConversationStage,
    CreateOutcome,
    PacketStatus,
    TurnOutcome,
)
from src.core.errors import StorageFailure
from src.services.conversation import TurnResult
from src.services.red_packet_service import LuckyMoneyEngine
from src.services.results import ClaimResult
from src.services.validation_gate import ValidationResult
from src.utils.i18n import i18n

router = Router(name="red_packet")

CALLBACK_PREFIX = "rp"


# ===========================
# KEYBOARDS
# ===========================


def packet_keyboard(packet_id: str, status: str, lang: str) -> InlineKeyboardMarkup:
    """Buttons under a packet card; grab and revoke only while active."""
    rows = []
    if status == PacketStatus.ACTIVE.value:
        rows.append([
            InlineKeyboardButton(text=i18n.get("buttons.grab", lang), callback_data=f"rp:grab:{packet_id}"),
        ])
    rows.append([
        InlineKeyboardButton(text=i18n.get("buttons.detail", lang), callback_data=f"rp:detail:{packet_id}"),
        InlineKeyboardButton(text=i18n.get("buttons.refresh", lang), callback_data=f"rp:refresh:{packet_id}"),
    ])
    if status == PacketStatus.ACTIVE.value:
        rows.append([
            InlineKeyboardButton(text=i18n.get("buttons.revoke", lang), callback_data=f"rp:revoke:{packet_id}"),
        ])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def confirm_keyboard(lang: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[[
        InlineKeyboardButton(text=i18n.get("buttons.confirm", lang), callback_data="rp:confirm"),
        InlineKeyboardButton(text=i18n.get("buttons.cancel", lang), callback_data="rp:cancel"),
    ]])


def cancel_keyboard(lang: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[[
        InlineKeyboardButton(text=i18n.get("buttons.cancel", lang), callback_data="rp:cancel"),
    ]])


def menu_keyboard(lang: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text=i18n.get("buttons.send", lang), callback_data="rp:send"),
            InlineKeyboardButton(text=i18n.get("buttons.history", lang), callback_data="rp:history"),
        ],
        [InlineKeyboardButton(text=i18n.get("buttons.menu", lang), callback_data="rp:menu")],
    ])


# ===========================
# RENDERING
# ===========================


def render_packet_card(detail: Dict[str, Any], lang: str) -> str:
    text = i18n.get(
        "packet.card",
        lang,
        sender=escape(detail.get("sender_name", "")),
        title=escape(detail["title"]),
        total=detail["total_amount"],
        currency=CURRENCY,
        count=detail["total_count"],
        claimed=detail["claimed_count"],
    )
    status = detail["status"]
    if status != PacketStatus.ACTIVE.value:
        text += "\n\n" + i18n.get(f"packet.{status}", lang, remaining=detail["remaining_amount"], currency=CURRENCY)
    return text


def render_validation_error(validation: ValidationResult, engine: LuckyMoneyEngine, lang: str) -> str:
    """Field or rule specific error line, quotas say which limit and when it resets."""
    limits = engine.config.limits
    bounds = {
        "amount": (limits.min_amount, limits.max_amount),
        "count": (limits.min_count, limits.max_count),
        "title": (0, engine.config.conversation.max_title_length),
    }
    low, high = bounds.get(validation.target_field, ("", ""))
    params: Dict[str, Any] = {
        "currency": CURRENCY,
        "precision": limits.precision,
        "min_share": limits.min_share,
        "min": low,
        "max": high,
        "balance": "0.00",
        "limit": "",
        "remaining": validation.remaining if validation.remaining is not None else "",
        "resets_at": validation.resets_at.strftime("%H:%M UTC") if validation.resets_at else "",
    }
    params.update(validation.detail)
    return i18n.get(f"error.{validation.reason.value}", lang, **params)


def render_prompt(stage: ConversationStage, result: TurnResult, engine: LuckyMoneyEngine, lang: str) -> str:
    limits = engine.config.limits
    conversation = engine.config.conversation
    if stage == ConversationStage.AWAITING_AMOUNT:
        return i18n.get("prompt.amount", lang, min=limits.min_amount, max=limits.max_amount, currency=CURRENCY)
    if stage == ConversationStage.AWAITING_COUNT:
        return i18n.get("prompt.count", lang, min=limits.min_count, max=limits.max_count)
    if stage == ConversationStage.AWAITING_TITLE:
        return i18n.get("prompt.title", lang, default=escape(conversation.default_title))
    return i18n.get(
        "prompt.confirm",
        lang,
        amount=result.draft.amount,
        count=result.draft.count,
        title=escape(result.draft.title or conversation.default_title),
        currency=CURRENCY,
    )


def render_claim(result: ClaimResult, lang: str) -> str:
    if result.outcome == ClaimOutcome.CLAIMED:
        text = i18n.get("claim.success", lang, amount=result.amount, order=result.claim_order, currency=CURRENCY)
        if result.is_best_luck:
            text += "\n" + i18n.get("claim.best_luck", lang)
        return text
    if result.outcome == ClaimOutcome.ALREADY_CLAIMED:
        return i18n.get("claim.already", lang, amount=result.amount, currency=CURRENCY)
    if result.outcome == ClaimOutcome.UNAVAILABLE:
        return i18n.get(f"claim.{result.reason.value}", lang)
    if result.outcome == ClaimOutcome.SELF_CLAIM:
        return i18n.get("claim.self", lang)
    return i18n.get("claim.conflict", lang)


async def show_packet(message: Message, engine: LuckyMoneyEngine, packet_id: str, lang: str) -> None:
    """Send a new packet card and remember its message id."""
    detail = await engine.queries.get_packet_detail(packet_id)
    sent = await message.answer(
        render_packet_card(detail, lang),
        reply_markup=packet_keyboard(packet_id, detail["status"], lang),
    )
    await engine.ledger.set_message_id(packet_id, sent.message_id)


async def refresh_card(message: Optional[Message], engine: LuckyMoneyEngine, packet_id: str, lang: str) -> None:
    if message is None:
        return
    detail = await engine.queries.get_packet_detail(packet_id)
    if detail is None:
        return
    try:
        await message.edit_text(
            render_packet_card(detail, lang),
            reply_markup=packet_keyboard(packet_id, detail["status"], lang),
        )
    except TelegramBadRequest as e:
        # "message is not modified" when nothing changed since the last render
        logger.debug(f"Packet card {packet_id} not refreshed: {e}")


async def reply_turn(message: Message, result: TurnResult, engine: LuckyMoneyEngine,
                     actor_name: str, lang: str) -> None:
    """Render one dialogue turn back into the chat."""
    outcome = result.outcome

    if outcome == TurnOutcome.IGNORED:
        return

    if outcome == TurnOutcome.BUSY:
        await message.answer(i18n.get("conversation.busy", lang, name=escape(actor_name)))
        return

    if outcome == TurnOutcome.CANCELLED:
        await message.answer(i18n.get("conversation.cancelled", lang))
        return

    if outcome == TurnOutcome.CREATED:
        await show_packet(message, engine, result.creation.packet.packet_id, lang)
        return

    lines = []
    if outcome == TurnOutcome.INVALID:
        if result.reason is not None:
            lines.append(render_validation_error(
                ValidationResult.failed(result.reason, detail=result.detail), engine, lang
            ))
        else:
            lines.append(i18n.get("error.confirm_expected", lang))
    elif outcome == TurnOutcome.REJECTED:
        creation = result.creation
        if creation.outcome == CreateOutcome.DUPLICATE:
            lines.append(i18n.get("error.duplicate", lang))
        else:
            lines.append(render_validation_error(creation.validation, engine, lang))

    if result.stage == ConversationStage.IDLE:
        await message.answer("\n".join(lines))
        return

    lines.append(render_prompt(result.stage, result, engine, lang))
    keyboard = confirm_keyboard(lang) if result.stage == ConversationStage.AWAITING_CONFIRM else cancel_keyboard(lang)
    await message.answer("\n\n".join(lines), reply_markup=keyboard)


# ===========================
# MESSAGES
# ===========================


@router.message(Command("luckymoney", "redmenu"))
async def cmd_menu(message: Message, engine: LuckyMoneyEngine, user_language: str = "zh"):
    await message.answer(await render_menu(engine, message.chat.id, user_language),
                         reply_markup=menu_keyboard(user_language))


@router.message(Command("rank"))
async def cmd_rank(message: Message, command: CommandObject, engine: LuckyMoneyEngine,
                   user_language: str = "zh"):
    """
    /rank [today|week|month|all] [amount|count|best_luck]
    """
    args = (command.args or "").split()
    period = args[0] if args else "week"
    kind = args[1] if len(args) > 1 else "amount"
    try:
        ranking = await engine.queries.get_ranking(kind=kind, period=period)
    except ValueError:
        period, kind = "week", "amount"
        ranking = await engine.queries.get_ranking(kind=kind, period=period)

    text = i18n.get("rank.header", user_language, period=i18n.get(f"rank.period.{period}", user_language))
    if not ranking:
        text += "\n\n" + i18n.get("rank.empty", user_language)
    else:
        text += "\n\n" + "\n".join(
            i18n.get("rank.line", user_language, rank=row["rank"], name=escape(row["name"]), value=row["value"])
            for row in ranking
        )
    await message.answer(text)


@router.message(F.text)
async def on_text(message: Message, engine: LuckyMoneyEngine, user_language: str = "zh"):
    """
    Creation commands (/red, hb, hongbao ...) and dialogue answers
    """
    if message.from_user is None or message.from_user.is_bot:
        return

    try:
        result = await engine.conversation.handle_message(
            message.chat.id, message.chat.type, message.from_user.id, message.text
        )
    except StorageFailure as e:
        logger.error(f"Storage failure in chat {message.chat.id}: {e}")
        await message.answer(i18n.get("error.storage", user_language))
        return
    except Exception as e:
        logger.exception(f"Error handling lucky money message in chat {message.chat.id}: {e}")
        await message.answer(i18n.get("error.generic", user_language))
        return

    if result.outcome != TurnOutcome.IGNORED:
        add_breadcrumb(f"turn {result.outcome.value} -> {result.stage.value}", category="red_packet")
    await reply_turn(message, result, engine, message.from_user.full_name, user_language)


async def render_menu(engine: LuckyMoneyEngine, chat_id: int, lang: str) -> str:
    active = await engine.queries.get_active_packets(chat_id)
    text = i18n.get("menu.header", lang) + "\n\n"
    if not active:
        return text + i18n.get("menu.no_active", lang)
    return text + i18n.get("menu.active_header", lang) + "\n" + "\n".join(
        i18n.get("menu.active_line", lang, title=escape(p["title"]),
                 remaining_count=p["remaining_count"], count=p["total_count"])
        for p in active
    )


async def render_history(engine: LuckyMoneyEngine, user_id: int, lang: str) -> str:
    stats = await engine.queries.get_user_stats(user_id)
    history = await engine.queries.get_user_history(user_id, page=1, limit=5)

    parts = [i18n.get("history.stats", lang, currency=CURRENCY, **{k: v for k, v in stats.items() if k != "user_id"})]
    if history["sent"]:
        parts.append(i18n.get("history.sent_header", lang) + "\n" + "\n".join(
            i18n.get("history.sent_line", lang, title=escape(p["title"]), total=p["total_amount"],
                     currency=CURRENCY, claimed=p["claimed_count"], count=p["total_count"],
                     status=i18n.get(f"status.{p['status']}", lang))
            for p in history["sent"]
        ))
    if history["received"]:
        badge = i18n.get("detail.best_badge", lang)
        parts.append(i18n.get("history.received_header", lang) + "\n" + "\n".join(
            i18n.get("history.received_line", lang, title=escape(r["title"]), amount=r["amount"],
                     currency=CURRENCY, badge=badge if r["is_best_luck"] else "")
            for r in history["received"]
        ))
    if not history["sent"] and not history["received"]:
        parts.append(i18n.get("history.empty", lang))
    return "\n\n".join(parts)


async def render_detail(engine: LuckyMoneyEngine, packet_id: str, lang: str) -> Optional[str]:
    detail = await engine.queries.get_packet_detail(packet_id)
    if detail is None:
        return None
    leaderboard = await engine.queries.get_leaderboard(packet_id)

    text = i18n.get(
        "detail.header", lang,
        title=escape(detail["title"]), sender=escape(detail["sender_name"]),
        claimed_amount=detail["claimed_amount"], total=detail["total_amount"], currency=CURRENCY,
        claimed=detail["claimed_count"], count=detail["total_count"],
        status=i18n.get(f"status.{detail['status']}", lang),
    )
    if not leaderboard:
        return text + "\n\n" + i18n.get("detail.empty", lang)

    badge = i18n.get("detail.best_badge", lang)
    return text + "\n\n" + "\n".join(
        i18n.get("detail.line", lang, order=row["claim_order"], name=escape(row["name"]),
                 amount=row["amount"], currency=CURRENCY, badge=badge if row["is_best_luck"] else "")
        for row in leaderboard
    )


# ===========================
# CALLBACKS
# ===========================


@router.callback_query(F.data.startswith(f"{CALLBACK_PREFIX}:"))
async def on_callback(callback: CallbackQuery, engine: LuckyMoneyEngine, user_language: str = "zh"):
    """Dispatch rp:* buttons; a callback id already handled is only acknowledged."""
    if not await engine.guard.first_seen_callback(callback.id):
        await callback.answer()
        return

    parts = callback.data.split(":", 2)
    action = parts[1] if len(parts) > 1 else ""
    packet_id = parts[2] if len(parts) > 2 else None
    lang = user_language

    handler = CALLBACK_ACTIONS.get(action)
    if handler is None or (action in PACKET_ACTIONS and not packet_id):
        logger.warning(f"Unknown lucky money callback: {callback.data}")
        await callback.answer()
        return

    set_packet_context(callback.message.chat.id if callback.message else None, packet_id)
    try:
        await handler(callback, engine, packet_id, lang)
    except StorageFailure as e:
        logger.error(f"Storage failure on callback {callback.data}: {e}")
        await callback.answer(i18n.get("error.storage", lang), show_alert=True)
    except Exception as e:
        logger.exception(f"Error handling callback {callback.data} from {callback.from_user.id}: {e}")
        await callback.answer(i18n.get("error.generic", lang), show_alert=True)


async def on_grab(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: str, lang: str) -> None:
    chat_id = callback.message.chat.id if callback.message else None
    result = await engine.claim(packet_id, callback.from_user.id, chat_id)
    await callback.answer(render_claim(result, lang), show_alert=result.ok)
    if result.ok or result.reason is not None:
        await refresh_card(callback.message, engine, packet_id, lang)


async def on_detail(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: str, lang: str) -> None:
    text = await render_detail(engine, packet_id, lang)
    if text is None:
        await callback.answer(i18n.get("claim.not_found", lang), show_alert=True)
        return
    await callback.answer()
    await callback.message.answer(text)


async def on_refresh(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: str, lang: str) -> None:
    await callback.answer()
    await refresh_card(callback.message, engine, packet_id, lang)


async def on_revoke(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: str, lang: str) -> None:
    result = await engine.revoke(packet_id, callback.from_user.id)
    await callback.answer(
        i18n.get(f"revoke.{result.outcome.value}", lang, amount=result.refunded, currency=CURRENCY),
        show_alert=True,
    )
    if result.ok:
        await refresh_card(callback.message, engine, packet_id, lang)


async def on_history(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: Optional[str], lang: str) -> None:
    await callback.answer()
    await callback.message.answer(await render_history(engine, callback.from_user.id, lang))


async def on_send(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: Optional[str], lang: str) -> None:
    await callback.answer()
    chat = callback.message.chat
    result = await engine.conversation.begin(chat.id, chat.type, callback.from_user.id)
    await reply_turn(callback.message, result, engine, callback.from_user.full_name, lang)


async def on_confirm(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: Optional[str], lang: str) -> None:
    await callback.answer()
    result = await engine.conversation.confirm(callback.message.chat.id, callback.from_user.id)
    await reply_turn(callback.message, result, engine, callback.from_user.full_name, lang)


async def on_cancel(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: Optional[str], lang: str) -> None:
    await callback.answer()
    result = await engine.conversation.cancel(callback.message.chat.id, callback.from_user.id)
    await reply_turn(callback.message, result, engine, callback.from_user.full_name, lang)


async def on_menu(callback: CallbackQuery, engine: LuckyMoneyEngine, packet_id: Optional[str], lang: str) -> None:
    await callback.answer()
    await callback.message.answer(
        await render_menu(engine, callback.message.chat.id, lang),
        reply_markup=menu_keyboard(lang),
    )


CALLBACK_ACTIONS = {
    "grab": on_grab,
    "detail": on_detail,
    "refresh": on_refresh,
    "revoke": on_revoke,
    "history": on_history,
    "send": on_send,
    "confirm": on_confirm,
    "cancel": on_cancel,
    "menu": on_menu,
}
PACKET_ACTIONS = {"grab", "detail", "refresh", "revoke"}
