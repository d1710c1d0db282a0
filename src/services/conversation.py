# coding: utf-8
"""
Creation dialogue state machine

    idle -> awaiting_amount -> awaiting_count -> awaiting_title
         -> awaiting_confirm -> (packet created) -> idle

Any stage goes back to idle on a cancel token. State is kept per chat in the
key-value store with an inactivity TTL; only the user who started the
dialogue drives it, everyone else is ignored.

A complete one-line command ("/red 50 5 Happy") skips the dialogue. When
creation fails, the draft is kept and the dialogue goes back to the stage of
the offending field; the other fields are not asked again. Failures no field
can fix (quota, permission, duplicate) leave the draft waiting for confirm.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from config.redpacket_config import RedPacketConfig
from src.cache.cache_keys import CacheKeyBuilder
from src.cache.memory_store import KeyValueStore
from src.core.enums import ConversationStage, CreateOutcome, PacketMode, TurnOutcome, ValidationReason
from src.core.errors import InvalidAllocationRequest
from src.database.models import ChatType
from src.services.allocation import check_allocation_request
from src.services.results import CreateResult
from src.services.validation_gate import CreationRequest, ValidationGate, ValidationResult
from src.utils.command_parser import ParsedCommand, parse_amount, parse_command, parse_count
from src.utils.time_utils import ensure_utc, utcnow


PacketCreator = Callable[[CreationRequest], Awaitable[CreateResult]]

FIELD_STAGES = {
    "amount": ConversationStage.AWAITING_AMOUNT,
    "count": ConversationStage.AWAITING_COUNT,
    "title": ConversationStage.AWAITING_TITLE,
}


@dataclass
class Draft:
    amount: Optional[str] = None  # Decimal as string, JSON friendly
    count: Optional[int] = None
    title: Optional[str] = None

    @property
    def amount_decimal(self) -> Optional[Decimal]:
        return Decimal(self.amount) if self.amount is not None else None


@dataclass
class ConversationState:
    chat_id: int
    stage: ConversationStage = ConversationStage.IDLE
    actor_id: Optional[int] = None
    chat_type: str = "group"
    draft: Draft = field(default_factory=Draft)
    expires_at: Optional[datetime] = None

    @property
    def is_idle(self) -> bool:
        return self.stage == ConversationStage.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "stage": self.stage.value,
            "actor_id": self.actor_id,
            "chat_type": self.chat_type,
            "draft": asdict(self.draft),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationState":
        expires_at = data.get("expires_at")
        return cls(
            chat_id=data["chat_id"],
            stage=ConversationStage(data["stage"]),
            actor_id=data.get("actor_id"),
            chat_type=data.get("chat_type", "group"),
            draft=Draft(**data.get("draft", {})),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )


@dataclass
class TurnResult:
    outcome: TurnOutcome
    stage: ConversationStage
    draft: Draft = field(default_factory=Draft)
    target_field: str = "none"
    reason: Optional[ValidationReason] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    creation: Optional[CreateResult] = None


class ConversationStore:
    """
    Per-chat dialogue state in the key-value store

    The key TTL is refreshed on every write; expires_at is also checked on
    read so an expired draft reads as idle even if the store kept it.
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: int,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def load(self, chat_id: int) -> ConversationState:
        data = await self.store.get(CacheKeyBuilder.conversation(chat_id))
        if not isinstance(data, dict):
            return ConversationState(chat_id=chat_id)
        state = ConversationState.from_dict(data)
        if state.expires_at and ensure_utc(state.expires_at) <= self.clock():
            logger.debug(f"Conversation in chat {chat_id} expired")
            await self.clear(chat_id)
            return ConversationState(chat_id=chat_id)
        return state

    async def save(self, state: ConversationState) -> None:
        state.expires_at = self.clock() + timedelta(seconds=self.ttl_seconds)
        await self.store.set(
            CacheKeyBuilder.conversation(state.chat_id), state.to_dict(), ttl=self.ttl_seconds
        )

    async def clear(self, chat_id: int) -> None:
        await self.store.delete(CacheKeyBuilder.conversation(chat_id))


class CreationConversation:
    """
    Drives the multi-turn creation dialogue

    Usage:
        >>> conversation = CreationConversation(state_store, gate, config, creator=engine.create)
        >>> result = await conversation.handle_message(chat_id, "group", user_id, "/red")
        >>> result.stage
        <ConversationStage.AWAITING_AMOUNT: 'awaiting_amount'>
    """

    def __init__(
        self,
        states: ConversationStore,
        gate: ValidationGate,
        config: RedPacketConfig,
        creator: PacketCreator,
    ):
        self.states = states
        self.gate = gate
        self.config = config
        self.creator = creator

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_message(self, chat_id: int, chat_type: str, actor_id: int, text: str) -> TurnResult:
        """
        Feed one text message into the dialogue

        Args:
            chat_id: Chat the message came from
            chat_type: Telegram chat type
            actor_id: Sender of the message
            text: Message text

        Returns:
            TurnResult describing what happened
        """
        text = (text or "").strip()
        state = await self.states.load(chat_id)

        command = parse_command(text, self.config.command_aliases)
        if command is not None:
            if not state.is_idle and state.actor_id != actor_id:
                return TurnResult(TurnOutcome.BUSY, state.stage)
            return await self._start(chat_id, chat_type, actor_id, command)

        if state.is_idle or state.actor_id != actor_id:
            return TurnResult(TurnOutcome.IGNORED, state.stage)

        if text.lower() in self.config.conversation.cancel_tokens:
            return await self.cancel(chat_id, actor_id)

        handler = {
            ConversationStage.AWAITING_AMOUNT: self._on_amount,
            ConversationStage.AWAITING_COUNT: self._on_count,
            ConversationStage.AWAITING_TITLE: self._on_title,
            ConversationStage.AWAITING_CONFIRM: self._on_confirm,
        }[state.stage]
        return await handler(state, text)

    async def begin(self, chat_id: int, chat_type: str, actor_id: int) -> TurnResult:
        """Send button: start an empty dialogue, same as a bare command."""
        state = await self.states.load(chat_id)
        if not state.is_idle and state.actor_id != actor_id:
            return TurnResult(TurnOutcome.BUSY, state.stage)
        command = ParsedCommand(alias=self.config.command_aliases[0])
        return await self._start(chat_id, chat_type, actor_id, command)

    async def confirm(self, chat_id: int, actor_id: int) -> TurnResult:
        """Confirm button: finalize a dialogue waiting for confirmation."""
        state = await self.states.load(chat_id)
        if state.stage != ConversationStage.AWAITING_CONFIRM or state.actor_id != actor_id:
            return TurnResult(TurnOutcome.IGNORED, state.stage)
        return await self._finalize(state)

    async def cancel(self, chat_id: int, actor_id: int) -> TurnResult:
        state = await self.states.load(chat_id)
        if state.is_idle or state.actor_id != actor_id:
            return TurnResult(TurnOutcome.IGNORED, state.stage)
        await self.states.clear(chat_id)
        logger.info(f"User {actor_id} cancelled packet creation in chat {chat_id}")
        return TurnResult(TurnOutcome.CANCELLED, ConversationStage.IDLE, draft=state.draft)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _start(self, chat_id: int, chat_type: str, actor_id: int, command: ParsedCommand) -> TurnResult:
        if self.config.permissions.group_only and not ChatType.is_group(chat_type):
            logger.info(f"User {actor_id} tried to create a packet in non-group chat {chat_id}")
            rejection = CreateResult(
                CreateOutcome.VALIDATION_FAILED,
                validation=ValidationResult.failed(ValidationReason.PRIVATE_CHAT),
            )
            return TurnResult(
                TurnOutcome.REJECTED,
                ConversationStage.IDLE,
                reason=ValidationReason.PRIVATE_CHAT,
                creation=rejection,
            )

        state = ConversationState(chat_id=chat_id, actor_id=actor_id, chat_type=chat_type)

        for value, accept in (
            (command.amount_text, self._accept_amount),
            (command.count_text, self._accept_count),
            (command.title, self._accept_title),
        ):
            if value is None:
                break
            failure = accept(state, value)
            if failure is not None:
                # keep the good part of the command, ask for the bad field
                state.stage = FIELD_STAGES[failure.target_field]
                await self.states.save(state)
                return self._invalid(state, failure)

        if command.is_complete:
            if state.draft.title is None:
                state.draft.title = self.config.conversation.default_title
            logger.info(f"User {actor_id} sent a complete packet command in chat {chat_id}")
            return await self._finalize(state)

        state.stage = self._next_stage(state)
        await self.states.save(state)
        logger.info(f"User {actor_id} started packet creation in chat {chat_id}")
        return TurnResult(TurnOutcome.PROMPT, state.stage, draft=state.draft)

    async def _on_amount(self, state: ConversationState, text: str) -> TurnResult:
        failure = self._accept_amount(state, text)
        if failure is not None:
            return self._invalid(state, failure)
        return await self._advance(state)

    async def _on_count(self, state: ConversationState, text: str) -> TurnResult:
        failure = self._accept_count(state, text)
        if failure is not None:
            return self._invalid(state, failure)
        return await self._advance(state)

    async def _on_title(self, state: ConversationState, text: str) -> TurnResult:
        conversation = self.config.conversation
        if self._is_ack(text):
            state.draft.title = conversation.default_title
            return await self._finalize(state)

        failure = self._accept_title(state, text)
        if failure is not None:
            return self._invalid(state, failure)
        if not conversation.confirm_step:
            return await self._finalize(state)
        return await self._advance(state)

    async def _on_confirm(self, state: ConversationState, text: str) -> TurnResult:
        if self._is_ack(text):
            return await self._finalize(state)
        return TurnResult(TurnOutcome.INVALID, state.stage, draft=state.draft, target_field="confirm")

    # ------------------------------------------------------------------
    # Field acceptance (mutates the draft only on success)
    # ------------------------------------------------------------------

    def _accept_amount(self, state: ConversationState, text: str) -> Optional[ValidationResult]:
        amount = parse_amount(text)
        result = self.gate.check_amount(amount)
        if not result.ok:
            return result
        state.draft.amount = str(amount)
        return None

    def _accept_count(self, state: ConversationState, text: str) -> Optional[ValidationResult]:
        count = parse_count(text)
        result = self.gate.check_count(count)
        if not result.ok:
            return result
        if state.draft.amount is not None:
            try:
                check_allocation_request(
                    state.draft.amount_decimal, count,
                    self.config.limits.min_share, self.config.limits.precision,
                )
            except InvalidAllocationRequest:
                return ValidationResult.failed(
                    ValidationReason.SHARE_TOO_SMALL,
                    detail={"min_share": self.config.limits.min_share},
                )
        state.draft.count = count
        return None

    def _accept_title(self, state: ConversationState, text: str) -> Optional[ValidationResult]:
        title = text.strip() or self.config.conversation.default_title
        result = self.gate.check_title(title)
        if not result.ok:
            return result
        state.draft.title = title
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _is_ack(self, text: str) -> bool:
        conversation = self.config.conversation
        token = text.strip().lower()
        return token in conversation.skip_tokens or token in conversation.confirm_tokens

    def _next_stage(self, state: ConversationState) -> ConversationStage:
        draft = state.draft
        if draft.amount is None:
            return ConversationStage.AWAITING_AMOUNT
        if draft.count is None:
            return ConversationStage.AWAITING_COUNT
        if draft.title is None:
            return ConversationStage.AWAITING_TITLE
        return ConversationStage.AWAITING_CONFIRM

    async def _advance(self, state: ConversationState) -> TurnResult:
        state.stage = self._next_stage(state)
        if state.stage == ConversationStage.AWAITING_CONFIRM and not self.config.conversation.confirm_step:
            return await self._finalize(state)
        await self.states.save(state)
        return TurnResult(TurnOutcome.PROMPT, state.stage, draft=state.draft)

    def _invalid(self, state: ConversationState, failure: ValidationResult) -> TurnResult:
        return TurnResult(
            TurnOutcome.INVALID,
            state.stage,
            draft=state.draft,
            target_field=failure.target_field,
            reason=failure.reason,
            detail=failure.detail,
        )

    async def _finalize(self, state: ConversationState) -> TurnResult:
        draft = state.draft
        request = CreationRequest(
            sender_id=state.actor_id,
            chat_id=state.chat_id,
            chat_type=state.chat_type,
            amount=draft.amount_decimal,
            count=draft.count,
            title=draft.title or self.config.conversation.default_title,
            mode=PacketMode.RANDOM,
        )
        creation = await self.creator(request)

        if creation.ok:
            await self.states.clear(state.chat_id)
            return TurnResult(TurnOutcome.CREATED, ConversationStage.IDLE, draft=draft, creation=creation)

        target = creation.error_field
        if target in FIELD_STAGES:
            # keep the draft, send the user back to the field to correct
            setattr(draft, target, None)
            state.stage = FIELD_STAGES[target]
            await self.states.save(state)
        else:
            # permission, quota and duplicate failures: draft is complete, the
            # user retries with the confirm token once the cause is gone
            state.stage = ConversationStage.AWAITING_CONFIRM
            await self.states.save(state)

        validation = creation.validation
        logger.info(
            f"Packet creation in chat {state.chat_id} rejected ({creation.outcome.value}), "
            f"back to {state.stage.value}"
        )
        return TurnResult(
            TurnOutcome.REJECTED,
            state.stage,
            draft=draft,
            target_field=target,
            reason=validation.reason if validation else None,
            detail=validation.detail if validation else {},
            creation=creation,
        )
