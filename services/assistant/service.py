"""
services/assistant/service.py
Gemini-backed assistant through its OpenAI-compatible endpoint.

command():       natural language → AssistantAction via function calling
smart_replies(): up to three short replies from the last few messages

Best effort: timeouts, API errors and malformed output degrade to a neutral
"speak" action or an empty list. Nothing here raises to the caller.
"""

import asyncio
import json
import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from openai import AsyncOpenAI, OpenAIError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import Message, Stoodio, User
from shared.schemas.schemas import AssistantAction, AssistantTurn

logger = logging.getLogger(__name__)

NEUTRAL_TEXT = "Sorry, I'm having trouble responding right now. Please try again in a moment."

VIEWS = [
    "DASHBOARD", "MY_BOOKINGS", "JOB_BOARD", "INBOX", "WALLET",
    "STOODIO_LIST", "ENGINEER_LIST", "PRODUCER_LIST", "PROFILE",
    "SUBSCRIPTION_PLANS", "DOCUMENTS",
]

SYSTEM_PROMPT = """You are Aria, the assistant inside Stoodioz, a marketplace where artists
book recording studios ("stoodioz"), audio engineers and producers.
Prefer doing things for the user by calling a tool over describing them.
Keep replies short and friendly. Never mention that you are a language model."""

GUEST_PROMPT = """The user is a guest. Your main goal is to get them signed up with
assist_signup. Deflect other requests politely until they pick a role."""

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "navigate",
            "description": "Open a screen in the app.",
            "parameters": {
                "type": "object",
                "properties": {
                    "target": {"type": "string", "enum": VIEWS},
                    "text": {"type": "string", "description": "Short confirmation for the user"},
                },
                "required": ["target", "text"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "create_document",
            "description": "Draft a document such as a split sheet or producer agreement.",
            "parameters": {
                "type": "object",
                "properties": {
                    "doc_type": {"type": "string"},
                    "details": {"type": "object", "description": "Parties, percentages, titles, terms"},
                    "text": {"type": "string"},
                },
                "required": ["doc_type", "text"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "find_studios",
            "description": "Search stoodioz by location and budget.",
            "parameters": {
                "type": "object",
                "properties": {
                    "location": {"type": "string"},
                    "max_hourly_rate": {"type": "number"},
                    "text": {"type": "string"},
                },
                "required": ["text"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "assist_signup",
            "description": "Guide a guest to create an account with the given role.",
            "parameters": {
                "type": "object",
                "properties": {
                    "role": {"type": "string", "enum": ["ARTIST", "ENGINEER", "PRODUCER", "STOODIO"]},
                    "text": {"type": "string"},
                },
                "required": ["role", "text"],
            },
        },
    },
]


def neutral_action(text: str = NEUTRAL_TEXT) -> AssistantAction:
    return AssistantAction(type="speak", target=None, value=None, text=text)


class AssistantService:
    def __init__(self):
        self._client: Optional[AsyncOpenAI] = None

    @property
    def enabled(self) -> bool:
        return bool(settings.GEMINI_API_KEY)

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy client with strict timeouts."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=settings.GEMINI_API_KEY,
                base_url=settings.GEMINI_BASE_URL,
                timeout=settings.ASSISTANT_TIMEOUT_SECONDS,
                max_retries=settings.ASSISTANT_MAX_RETRIES,
            )
        return self._client

    async def _complete(self, **kwargs):
        return await asyncio.wait_for(
            self.client.chat.completions.create(model=settings.GEMINI_MODEL, **kwargs),
            timeout=settings.ASSISTANT_TIMEOUT_SECONDS,
        )

    # ── Commands ───────────────────────────────────────────────

    async def command(
        self,
        db: AsyncSession,
        message: str,
        history: List[AssistantTurn],
        user: Optional[User] = None,
    ) -> AssistantAction:
        if not self.enabled:
            return neutral_action()

        system = SYSTEM_PROMPT
        if user:
            system += f"\nThe user, {user.name}, is logged in as a {user.role.value}."
        else:
            system += "\n" + GUEST_PROMPT

        messages = [{"role": "system", "content": system}]
        messages += [{"role": turn.role, "content": turn.content} for turn in history]
        messages.append({"role": "user", "content": message})

        try:
            response = await self._complete(messages=messages, tools=TOOLS, tool_choice="auto")
            reply = response.choices[0].message
            if reply.tool_calls:
                call = reply.tool_calls[0]
                args = json.loads(call.function.arguments or "{}")
                return await self._to_action(db, call.function.name, args)
            if reply.content and reply.content.strip():
                return AssistantAction(type="speak", text=reply.content.strip())
            return neutral_action()
        except asyncio.TimeoutError:
            logger.warning("Assistant command timed out")
        except OpenAIError as e:
            logger.warning(f"Assistant API error: {e}")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Assistant returned malformed output: {e}")
        return neutral_action()

    async def _to_action(self, db: AsyncSession, name: str, args: dict) -> AssistantAction:
        text = args.get("text") or "On it."
        if name == "navigate":
            target = args["target"]
            if target not in VIEWS:
                raise ValueError(f"unknown view {target}")
            return AssistantAction(type="navigate", target=target, text=text)
        if name == "create_document":
            return AssistantAction(
                type="create_document",
                target=args["doc_type"],
                value=args.get("details") or {},
                text=text,
            )
        if name == "find_studios":
            studios = await find_studios(db, args.get("location"), args.get("max_hourly_rate"))
            return AssistantAction(type="find_studios", target=args.get("location"), value=studios, text=text)
        if name == "assist_signup":
            return AssistantAction(type="assist_signup", target=args["role"], text=text)
        raise ValueError(f"unknown tool {name}")

    # ── Smart replies ──────────────────────────────────────────

    async def smart_replies(self, db: AsyncSession, conversation_id: UUID, user: User) -> List[str]:
        if not self.enabled:
            return []

        result = await db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id)
            .limit(settings.SMART_REPLY_HISTORY)
        )
        recent = list(reversed(result.scalars().all()))
        if not recent:
            return []

        transcript = "\n".join(
            f"{'You' if m.sender_id == user.id else 'Other'}: {m.text}" for m in recent
        )
        prompt = (
            'Suggest 3 concise, natural-sounding replies for "You" in this conversation.\n'
            "Replies should be short, like a text message. Do not use quotes.\n"
            'Return only a JSON array of strings: ["reply1", "reply2", "reply3"]\n\n'
            f"Conversation:\n{transcript}"
        )

        try:
            response = await self._complete(messages=[{"role": "user", "content": prompt}])
            content = (response.choices[0].message.content or "").strip()
            replies = json.loads(_strip_fences(content))
        except asyncio.TimeoutError:
            logger.warning("Smart replies timed out")
            return []
        except OpenAIError as e:
            logger.warning(f"Smart replies API error: {e}")
            return []
        except (ValueError, IndexError) as e:
            logger.warning(f"Smart replies malformed output: {e}")
            return []

        if not isinstance(replies, list):
            return []
        return [str(r).strip() for r in replies if str(r).strip()][:3]


def _strip_fences(text: str) -> str:
    # Models sometimes wrap JSON in ```json fences
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    return text.strip()


async def find_studios(
    db: AsyncSession, location: Optional[str] = None, max_hourly_rate=None, limit: int = 5
) -> List[dict]:
    query = select(Stoodio)
    if location:
        query = query.where(Stoodio.location.ilike(f"%{location}%"))
    if max_hourly_rate is not None:
        query = query.where(Stoodio.hourly_rate <= Decimal(str(max_hourly_rate)))
    result = await db.execute(query.order_by(Stoodio.hourly_rate, Stoodio.name).limit(limit))
    return [
        {
            "id": str(s.id),
            "name": s.name,
            "location": s.location,
            "hourly_rate": str(s.hourly_rate),
        }
        for s in result.scalars()
    ]


_assistant = AssistantService()


def get_assistant() -> AssistantService:
    """FastAPI dependency. Tests override it with a stubbed client."""
    return _assistant
