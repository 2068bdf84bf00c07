"""Normalize signal-cli REST envelopes into Message objects.

Envelope shape (json-rpc receive mode)::

    {"envelope": {
        "source": "+15550001111", "sourceNumber": ..., "sourceUuid": ...,
        "timestamp": 1700000000000,
        "dataMessage": {
            "message": "echo hi",
            "groupInfo": {"groupId": "abc=="},
            "mentions": [{"number": "+1555...", "uuid": "..."}],
            "quote": {"id": 1699999999999, "author": "+1555...", "text": "..."}
        },
        "syncMessage": {"sentMessage": {"message": ..., "destination": ...}}
    }}

Every field is optional; a payload the adapter does not understand
yields empty strings rather than raising.
"""

from typing import Any, List, Mapping, NamedTuple, Optional, Protocol


class Transport(Protocol):
    """What the router needs from a messaging transport."""

    async def send(self, chat: str, content: str, *, quote: Optional["Message"] = None) -> Any:
        ...


class InboundMessage(NamedTuple):
    """What a transport hands to Bot.handle()."""

    body: str
    raw: Any


def _as_mapping(value: Any) -> Mapping:
    return value if isinstance(value, Mapping) else {}


def _envelope(raw: Any) -> Mapping:
    raw = _as_mapping(raw)
    return _as_mapping(raw.get("envelope", raw))


def _sent_message(envelope: Mapping) -> Mapping:
    return _as_mapping(_as_mapping(envelope.get("syncMessage")).get("sentMessage"))


def _data_message(envelope: Mapping) -> Mapping:
    data = _as_mapping(envelope.get("dataMessage"))
    return data or _sent_message(envelope)


def extract_body(raw: Any) -> str:
    """Text of a raw envelope, or "" when it carries none."""
    return _data_message(_envelope(raw)).get("message") or ""


class Message:
    """Transport-independent view of one inbound message.

    Attributes:
        id: Envelope timestamp (signal-cli uses it as message id).
        sender: Phone number or UUID of the author.
        chat: Where replies go: ``group.<id>`` or the sender.
        is_group: Whether the message was posted in a group.
        from_me: Whether our own account sent it.
        body: Message text.
        mentions: Numbers (or UUIDs) mentioned in the message.
        quoted: The message being replied to, if any.
        raw: Untouched transport payload.
    """

    def __init__(self, raw: Any, transport: Optional[Transport] = None, account: Optional[str] = None):
        self.raw = raw
        self._transport = transport

        envelope = _envelope(raw)
        data = _data_message(envelope)

        self.id = envelope.get("timestamp")
        self.sender = (
            envelope.get("sourceNumber")
            or envelope.get("source")
            or envelope.get("sourceUuid")
            or ""
        )

        group_id = _as_mapping(data.get("groupInfo")).get("groupId")
        self.is_group = bool(group_id)
        if group_id:
            self.chat = f"group.{group_id}"
        else:
            sent = _sent_message(envelope)
            self.chat = (
                sent.get("destinationNumber")
                or sent.get("destination")
                or self.sender
            )

        self.from_me = bool(_sent_message(envelope)) or (
            account is not None and self.sender == account
        )
        self.body = data.get("message") or ""
        self.mentions: List[str] = [
            m.get("number") or m.get("uuid")
            for m in data.get("mentions") or []
            if isinstance(m, Mapping) and (m.get("number") or m.get("uuid"))
        ]

        self.quoted: Optional[Message] = None
        quote = _as_mapping(data.get("quote"))
        if quote:
            quoted_data = {"message": quote.get("text") or ""}
            if group_id:
                quoted_data["groupInfo"] = {"groupId": group_id}
            quoted_raw = {
                "envelope": {
                    "timestamp": quote.get("id"),
                    "sourceNumber": quote.get("authorNumber") or quote.get("author"),
                    "sourceUuid": quote.get("authorUuid"),
                    "dataMessage": quoted_data,
                }
            }
            self.quoted = Message(quoted_raw, transport, account)

    async def reply(self, text: str) -> Any:
        """Send ``text`` to this message's chat, quoting it."""
        if self._transport is None:
            raise RuntimeError("Message has no transport to reply through")
        return await self._transport.send(self.chat, text, quote=self)

    def __repr__(self) -> str:
        sender = "..." + self.sender[-4:] if self.sender else ""
        return f"Message(id={self.id!r}, sender={sender!r}, is_group={self.is_group})"


def serialize(raw: Any, transport: Optional[Transport] = None, account: Optional[str] = None) -> Message:
    return Message(raw, transport, account)
