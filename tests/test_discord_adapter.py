from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

pytest.importorskip("discord")

from shared_context_bot.context.identity import IdentityDirectory  # noqa: E402
from shared_context_bot.dialogue.orchestrator import InboundMessage, TurnOutcome, TurnState  # noqa: E402
from shared_context_bot.discord.common import chunk_text, has_broadcast_token  # noqa: E402
from shared_context_bot.discord.mixins import IdentityMixin, MessageMixin  # noqa: E402

BOT_USER = SimpleNamespace(id=999, display_name="Pip", name="pip")


class _Typing:
    async def __aenter__(self) -> None:
        return None

    async def __aexit__(self, *exc: object) -> None:
        return None


class _FakeChannel:
    def __init__(self, referenced: Any = None) -> None:
        self.id = 42
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.referenced = referenced

    def typing(self) -> _Typing:
        return _Typing()

    async def send(self, text: str, **kwargs: Any) -> None:
        self.sent.append((text, kwargs))

    async def fetch_message(self, message_id: int) -> Any:
        return self.referenced


class _FakeStore:
    def __init__(self) -> None:
        self.identities: dict[str, str] = {}

    async def upsert_identity(self, user_id: str, display_name: str) -> None:
        self.identities[user_id] = display_name


class _FakeOrchestrator:
    def __init__(self, reply: str = "hello!") -> None:
        self.reply = reply
        self.inbound: list[InboundMessage] = []

    async def handle(self, message: InboundMessage, send_reply) -> TurnOutcome:
        self.inbound.append(message)
        await send_reply(self.reply)
        return TurnOutcome(state=TurnState.REPLIED, reply_text=self.reply)


class _Harness(IdentityMixin, MessageMixin):
    def __init__(self, orchestrator: _FakeOrchestrator | None = None) -> None:
        self.user = BOT_USER
        self.identities = IdentityDirectory(bot_id="999", bot_name="Pip")
        self.store = _FakeStore()
        self.orchestrator = orchestrator or _FakeOrchestrator()


def _message(
    content: str,
    *,
    mentions: list[Any] | None = None,
    mention_everyone: bool = False,
    guild: Any = SimpleNamespace(id=1),
    reference: Any = None,
    channel: _FakeChannel | None = None,
) -> SimpleNamespace:
    author = SimpleNamespace(id=111, display_name="Alice", name="alice", bot=False)
    return SimpleNamespace(
        id=5000,
        author=author,
        content=content,
        mentions=mentions if mentions is not None else [BOT_USER],
        mention_everyone=mention_everyone,
        guild=guild,
        reference=reference,
        channel=channel or _FakeChannel(),
    )


def test_strip_bot_mention_handles_both_forms() -> None:
    harness = _Harness()

    assert harness._strip_bot_mention("<@999> hi   <@!999> there <@222>") == "hi there <@222>"


def test_mention_detection_ignores_everyone_pings() -> None:
    harness = _Harness()

    assert harness._mentions_bot(_message("<@999> hi")) is True
    assert harness._mentions_bot(_message("hi all", mentions=[])) is False
    assert harness._mentions_bot(_message("dm text", mentions=[], guild=None)) is True
    assert harness._is_broadcast(_message("@everyone look", mention_everyone=True)) is True
    assert harness._is_broadcast(_message("<@999> ping @here")) is True
    assert harness._is_broadcast(_message("<@999> hi")) is False


def test_build_inbound_resolves_reply_reference() -> None:
    harness = _Harness()
    referenced = SimpleNamespace(id=77, content="cats  are   great")
    message = _message(
        "<@999> is this true?",
        reference=SimpleNamespace(message_id=77, resolved=None),
        channel=_FakeChannel(referenced=referenced),
    )

    inbound = asyncio.run(harness._build_inbound(message))

    assert inbound.sender_id == "111"
    assert inbound.text == "is this true?"
    assert inbound.mentions_bot is True
    assert inbound.is_broadcast_mention is False
    assert inbound.channel_id == "42"
    assert inbound.sender_name == "Alice"
    assert inbound.referenced_message_id == "77"
    assert inbound.referenced_text == "cats are great"


def test_on_message_routes_through_orchestrator_and_learns_names() -> None:
    harness = _Harness()
    bob = SimpleNamespace(id=222, display_name="Bob", name="bob")
    message = _message("<@999> say hi to <@222>", mentions=[BOT_USER, bob])

    asyncio.run(harness.on_message(message))

    (inbound,) = harness.orchestrator.inbound
    assert inbound.text == "say hi to <@222>"
    assert message.channel.sent == [("hello!", {"reference": message})]
    assert harness.store.identities == {"111": "Alice", "222": "Bob"}
    assert harness.identities.user_id_for("bob") == "222"


def test_on_message_skips_bots_and_broadcasts() -> None:
    harness = _Harness()
    from_bot = _message("<@999> hi")
    from_bot.author.bot = True
    broadcast = _message("<@999> @everyone hi", mention_everyone=True)
    unaddressed = _message("just chatting", mentions=[])

    for message in (from_bot, broadcast, unaddressed):
        asyncio.run(harness.on_message(message))

    assert harness.orchestrator.inbound == []
    assert harness.store.identities == {}


def test_long_replies_are_chunked_with_reference_on_first_chunk() -> None:
    harness = _Harness(_FakeOrchestrator(reply="x" * 4000))
    message = _message("<@999> write an essay")

    asyncio.run(harness.on_message(message))

    sizes = [len(text) for text, _ in message.channel.sent]
    assert sizes == [1900, 1900, 200]
    assert message.channel.sent[0][1] == {"reference": message}
    assert message.channel.sent[1][1] == {}


def test_common_helpers() -> None:
    assert chunk_text("short") == ["short"]
    assert has_broadcast_token("hey @Here folks") is True
    assert has_broadcast_token("email me at a@b.c") is False
