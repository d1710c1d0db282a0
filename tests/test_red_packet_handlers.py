"""
Tests for lucky money keyboards, rendering and dialogue replies
"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock

from config.config import CURRENCY
from src.bot.handlers.red_packet import (
    CALLBACK_ACTIONS,
    PACKET_ACTIONS,
    packet_keyboard,
    render_claim,
    render_packet_card,
    render_validation_error,
    reply_turn,
)
from src.core.enums import (
    ClaimOutcome,
    ConversationStage,
    PacketStatus,
    TurnOutcome,
    UnavailableReason,
    ValidationReason,
)
from src.services.conversation import Draft, TurnResult
from src.services.results import ClaimResult
from src.services.validation_gate import ValidationResult
from src.utils.i18n import i18n

from tests.conftest import GROUP_ID, SENDER_ID


def _callbacks(keyboard):
    return [button.callback_data for row in keyboard.inline_keyboard for button in row]


def _fake_message():
    message = Mock()
    message.answer = AsyncMock(return_value=Mock(message_id=555))
    return message


def test_active_packet_keyboard_has_grab_and_revoke():
    assert _callbacks(packet_keyboard("RP1", PacketStatus.ACTIVE.value, "en")) == [
        "rp:grab:RP1", "rp:detail:RP1", "rp:refresh:RP1", "rp:revoke:RP1",
    ]


def test_finished_packet_keyboard_only_shows_details():
    assert _callbacks(packet_keyboard("RP1", PacketStatus.COMPLETED.value, "en")) == [
        "rp:detail:RP1", "rp:refresh:RP1",
    ]


def test_every_callback_action_is_dispatched():
    assert PACKET_ACTIONS <= set(CALLBACK_ACTIONS)
    assert {"history", "send", "confirm", "cancel", "menu"} <= set(CALLBACK_ACTIONS)


def test_render_packet_card_escapes_title_and_shows_final_state():
    detail = {
        "sender_name": "@alice",
        "title": "<b>hi</b>",
        "total_amount": Decimal("10.00"),
        "total_count": 3,
        "claimed_count": 1,
        "status": PacketStatus.EXPIRED.value,
        "remaining_amount": Decimal("6.00"),
    }

    text = render_packet_card(detail, "en")

    assert "&lt;b&gt;hi&lt;/b&gt;" in text
    assert "1/3" in text
    assert "6.00" in text


def test_render_validation_error_for_quota(engine):
    validation = ValidationResult.failed(
        ValidationReason.DAILY_AMOUNT_EXCEEDED, remaining=Decimal("20.00"), detail={"limit": Decimal("100.00")}
    )

    text = render_validation_error(validation, engine, "en")

    assert "20.00" in text
    assert "{" not in text


def test_render_title_error_uses_title_limit(engine):
    text = render_validation_error(ValidationResult.failed(ValidationReason.TITLE_TOO_LONG), engine, "en")

    assert "50" in text


def test_render_validation_error_for_every_reason(engine):
    for reason in ValidationReason:
        text = render_validation_error(ValidationResult.failed(reason), engine, "zh")
        assert "{" not in text, reason


def test_render_claim_outcomes():
    claimed = ClaimResult(ClaimOutcome.CLAIMED, "RP1", amount=Decimal("3.21"), claim_order=2, is_best_luck=True)
    assert "3.21" in render_claim(claimed, "en")
    assert i18n.get("claim.best_luck", "en") in render_claim(claimed, "en")

    late = ClaimResult(ClaimOutcome.UNAVAILABLE, "RP1", reason=UnavailableReason.COMPLETED)
    assert render_claim(late, "en") == i18n.get("claim.completed", "en")

    assert render_claim(ClaimResult(ClaimOutcome.CONFLICT, "RP1"), "en") == i18n.get("claim.conflict", "en")


async def test_reply_turn_ignored_sends_nothing(engine):
    message = _fake_message()

    await reply_turn(message, TurnResult(TurnOutcome.IGNORED, ConversationStage.IDLE), engine, "alice", "en")

    message.answer.assert_not_called()


async def test_reply_turn_prompts_for_next_field(engine):
    message = _fake_message()
    result = TurnResult(TurnOutcome.PROMPT, ConversationStage.AWAITING_COUNT, draft=Draft(amount="50"))

    await reply_turn(message, result, engine, "alice", "en")

    text = message.answer.call_args.args[0]
    assert text == i18n.get("prompt.count", "en", min=1, max=100)
    assert _callbacks(message.answer.call_args.kwargs["reply_markup"]) == ["rp:cancel"]


async def test_reply_turn_invalid_shows_error_and_prompt(engine):
    message = _fake_message()
    result = TurnResult(
        TurnOutcome.INVALID,
        ConversationStage.AWAITING_AMOUNT,
        target_field="amount",
        reason=ValidationReason.AMOUNT_TOO_LARGE,
    )

    await reply_turn(message, result, engine, "alice", "en")

    text = message.answer.call_args.args[0]
    assert "10000.00" in text
    assert CURRENCY in text


async def test_reply_turn_created_posts_packet_card(engine, fund, admin_group, session_maker):
    await fund(SENDER_ID, "100.00")
    message = _fake_message()
    result = await engine.conversation.handle_message(GROUP_ID, "supergroup", SENDER_ID, "/red 10 2 Hi")

    await reply_turn(message, result, engine, "alice", "en")

    assert "rp:grab:" in _callbacks(message.answer.call_args.kwargs["reply_markup"])[0]
    detail = await engine.queries.get_packet_detail(result.creation.packet.packet_id)
    assert detail["message_id"] == 555
