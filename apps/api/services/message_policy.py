"""
Message Selection Policy

Picks what the buddy says for an event (welcome, completed, skipped, missed,
follow-up, freeform reply) given the current streak context.

Two providers share one capability, get_message(context):
- ScriptedMessageProvider: fixed pools, uniform random choice, streak-aware
  escalation.
- GenerativeMessageProvider: Anthropic Messages API with a rolling
  conversation window.

A generative provider is never handed out bare. create_provider() wraps it in
FallbackMessageProvider, which answers from the scripted pools whenever the
backend fails, so callers never see a backend error.
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from anthropic import AsyncAnthropic

from core.config import settings
from core.exceptions import GenerativeBackendFailure
from schemas import MessageProviderKind, UserSettings
from services.tone import ToneBand, classify

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    WELCOME = "welcome"
    CHECK_IN = "check_in"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    MISSED = "missed"
    ENCOURAGEMENT = "encouragement"
    REMINDER_FOLLOW_UP = "reminder_follow_up"
    MESSAGE = "message"


@dataclass
class MessageContext:
    """Everything a provider may use to pick a message."""
    type: str
    streak: int = 0
    days_since_last: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.type, Enum):
            self.type = self.type.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "streak": self.streak,
            "days_since_last": self.days_since_last,
            "data": dict(self.data),
        }


class MessageProvider(ABC):
    """Produces one message for a context."""

    @abstractmethod
    async def get_message(self, context: MessageContext) -> str:
        raise NotImplementedError


# =============================================================================
# SCRIPTED
# =============================================================================

SCRIPTED_MESSAGES: Dict[str, List[str]] = {
    MessageType.WELCOME.value: [
        "Hey! Ready to get moving?",
        "It's workout time. Let's do this.",
        "Time to prove to yourself you can do this.",
        "I'm here. You're here. Let's get it done.",
    ],
    MessageType.CHECK_IN.value: [
        "So... did you do it?",
        "How'd it go?",
        "Tell me what you did.",
        "What happened?",
    ],
    MessageType.COMPLETED.value: [
        "Hell yes! That's what I'm talking about.",
        "You did it. I knew you would.",
        "There you go. That's the version of you that shows up.",
        "Excellent. Keep this momentum going.",
    ],
    MessageType.SKIPPED.value: [
        "Okay, you skipped today. Tomorrow is a new day.",
        "Not today. That's fine. But don't make it a pattern.",
        "Alright. Just don't let this become the norm.",
        "Fair enough. But I'll be back tomorrow.",
    ],
    MessageType.MISSED.value: [
        "You missed one. It happens. Don't miss the next one.",
        "Missed today. The streak can start fresh tomorrow.",
        "That's a miss. Don't beat yourself up, just do better next time.",
        "Okay, you didn't make it. Reset and try again.",
    ],
    MessageType.ENCOURAGEMENT.value: [
        "Remember: you just have to do the thing. It doesn't have to be perfect.",
        "Small actions. Consistent days. That's all this is.",
        "You've done this before. You can do it again.",
        "The hard part is starting. Once you start, you'll be fine.",
    ],
    MessageType.REMINDER_FOLLOW_UP.value: [
        "Hey, checking in. What actually happened?",
        "It's been an hour. Did you end up doing anything?",
        "Following up - what did you do?",
    ],
    MessageType.MESSAGE.value: [
        "Got it.",
        "I hear you.",
        "Okay.",
        "Fair enough.",
        "Noted.",
        "Alright.",
        "Makes sense.",
    ],
}

# Appended to a completion message, keyed by tone band
STREAK_LINES: Dict[ToneBand, List[str]] = {
    ToneBand.GOOD: [
        "You're building something here. Keep going.",
        "This is a solid streak. Don't break it now.",
        "Look at you maintaining consistency. Nice work.",
    ],
    ToneBand.GREAT: [
        "This streak is impressive. You're proving something to yourself.",
        "You're on a roll. This is the momentum you needed.",
        "Damn. You're actually doing this. Keep it up.",
    ],
    ToneBand.AMAZING: [
        "This is incredible. You've made this a real habit.",
        "Look at this streak. You're a different person than you were when we started.",
        "This is what discipline looks like. You should be proud.",
    ],
}

MISSED_ESCALATION = "It's been a few days. Time to get back on track."
MISSED_ESCALATION_AFTER_DAYS = 3
DEFAULT_REPLY = "I'm here when you need me."


class ScriptedMessageProvider(MessageProvider):
    """Canned messages. Works offline and never fails."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def _select(self, pool: List[str]) -> str:
        return self.rng.choice(pool)

    async def get_message(self, context: MessageContext) -> str:
        message_type = context.type

        if message_type == MessageType.COMPLETED:
            response = self._select(SCRIPTED_MESSAGES[MessageType.COMPLETED.value])
            band = classify(context.streak, context.days_since_last)
            if band in STREAK_LINES:
                response += " " + self._select(STREAK_LINES[band])
            return response

        if message_type == MessageType.MISSED:
            response = self._select(SCRIPTED_MESSAGES[MessageType.MISSED.value])
            days = context.days_since_last
            if days is not None and days > MISSED_ESCALATION_AFTER_DAYS:
                response += " " + MISSED_ESCALATION
            return response

        pool = SCRIPTED_MESSAGES.get(message_type)
        if pool:
            return self._select(pool)
        return DEFAULT_REPLY


# =============================================================================
# GENERATIVE
# =============================================================================

SYSTEM_PROMPT = """You are a workout accountability buddy. You're direct, no-nonsense, supportive but not coddling. The person you're helping struggles with motivation on low-energy days, but you know they're capable once they push through the mental barrier.

Your role:
- Keep responses SHORT (1-3 sentences max)
- Be encouraging but realistic
- Celebrate wins without being over-the-top
- When they miss workouts, acknowledge it but don't pile on guilt
- Reference their streak and progress naturally
- Match their energy - if they're struggling, be gentle; if they're motivated, amplify it

Remember: they need external structure because their internal motivation is depleted. You're the voice that shows up when they can't find it themselves."""


def build_prompt(context: MessageContext) -> str:
    """Event-specific user turn embedding the numeric streak state."""
    days = context.days_since_last
    days_text = str(days) if days is not None else "none logged yet"
    streak_info = f"Current streak: {context.streak} days. Days since last workout: {days_text}."

    message_type = context.type
    if message_type == MessageType.WELCOME:
        return f"It's workout time. {streak_info} Send a brief motivational message (1-2 sentences)."
    if message_type == MessageType.CHECK_IN:
        return f"Workout was scheduled. {streak_info} Ask what they did (keep it short and direct)."
    if message_type == MessageType.COMPLETED:
        return f"They completed their workout! {streak_info} Celebrate appropriately based on their streak (1-2 sentences)."
    if message_type == MessageType.SKIPPED:
        return f"They skipped today's workout. {streak_info} Acknowledge it without being harsh (1-2 sentences)."
    if message_type == MessageType.MISSED:
        return f"They missed their workout entirely. {streak_info} Give a brief reality check (1-2 sentences)."
    if message_type == MessageType.ENCOURAGEMENT:
        return f"{streak_info} Give brief encouragement to help them get started (1-2 sentences)."
    if message_type == MessageType.REMINDER_FOLLOW_UP:
        return (
            f"Following up an hour after their scheduled workout. {streak_info} "
            "Ask what actually happened (keep it conversational and brief)."
        )
    if message_type == MessageType.MESSAGE:
        content = context.data.get("content", "")
        return f'{streak_info} User says: "{content}". Respond conversationally and briefly (1-2 sentences).'
    return f"{streak_info} Say something supportive and brief."


class GenerativeBackend(ABC):
    """A text-generation service. Any failure raises GenerativeBackendFailure."""

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_message: str,
    ) -> str:
        raise NotImplementedError


class AnthropicBackend(GenerativeBackend):
    """Anthropic Messages API. Single shot: the SDK's own retries are disabled."""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Any = None,
    ):
        self.model = model or settings.ANTHROPIC_MODEL
        self.max_tokens = max_tokens or settings.ANTHROPIC_MAX_TOKENS
        self.client = client or AsyncAnthropic(
            api_key=api_key,
            timeout=settings.EXTERNAL_API_TIMEOUT,
            max_retries=0,
        )

    async def generate(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_message: str,
    ) -> str:
        messages = [*history, {"role": "user", "content": user_message}]
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=messages,
            )
        except Exception as e:
            raise GenerativeBackendFailure(f"Anthropic request failed: {e}") from e

        try:
            text = "".join(
                block.text for block in response.content if getattr(block, "type", None) == "text"
            ).strip()
        except (AttributeError, TypeError) as e:
            raise GenerativeBackendFailure(f"Malformed Anthropic response: {e}") from e

        if not text:
            raise GenerativeBackendFailure("Anthropic response had no text content")
        return text


class GenerativeMessageProvider(MessageProvider):
    """
    Live messages with conversation memory.

    History holds the most recent exchanges (user prompt + assistant reply),
    oldest dropped first. It only grows after a successful call.
    """

    def __init__(
        self,
        backend: GenerativeBackend,
        system_prompt: str = SYSTEM_PROMPT,
        max_exchanges: Optional[int] = None,
    ):
        self.backend = backend
        self.system_prompt = system_prompt
        self.max_entries = 2 * (max_exchanges or settings.HISTORY_MAX_EXCHANGES)
        self.conversation_history: List[Dict[str, str]] = []

    async def get_message(self, context: MessageContext) -> str:
        user_message = build_prompt(context)
        message = await self.backend.generate(
            self.system_prompt,
            list(self.conversation_history),
            user_message,
        )

        self.conversation_history.extend([
            {"role": "user", "content": user_message},
            {"role": "assistant", "content": message},
        ])
        if len(self.conversation_history) > self.max_entries:
            self.conversation_history = self.conversation_history[-self.max_entries:]

        return message

    def clear_history(self) -> None:
        self.conversation_history = []


class FallbackMessageProvider(MessageProvider):
    """Answers from fallback for any call where primary fails."""

    def __init__(self, primary: MessageProvider, fallback: Optional[MessageProvider] = None):
        self.primary = primary
        self.fallback = fallback or ScriptedMessageProvider()

    async def get_message(self, context: MessageContext) -> str:
        try:
            return await self.primary.get_message(context)
        except Exception as e:
            logger.warning(
                f"Generative message failed, using scripted fallback: {e}",
                extra={"extra_fields": {"message_type": str(context.type)}},
            )
            return await self.fallback.get_message(context)


def create_provider(
    user_settings: UserSettings,
    backend: Optional[GenerativeBackend] = None,
) -> MessageProvider:
    """Provider for the configured message source."""
    if user_settings.message_provider == MessageProviderKind.API:
        if not user_settings.api_key and backend is None:
            logger.warning("No API key provided, falling back to scripted messages")
            return ScriptedMessageProvider()
        generative = GenerativeMessageProvider(backend or AnthropicBackend(user_settings.api_key))
        return FallbackMessageProvider(generative, ScriptedMessageProvider())

    return ScriptedMessageProvider()
