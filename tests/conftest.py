"""Shared fixtures: a fake transport and signal-cli style envelopes."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from switchboard import Bot, InboundMessage

SENDER = "+15550001111"


def _make_raw(body="", sender=SENDER, group_id=None, timestamp=1700000000000, **data):
    data_message = {"message": body, **data}
    if group_id:
        data_message["groupInfo"] = {"groupId": group_id}
    return {
        "envelope": {
            "sourceNumber": sender,
            "timestamp": timestamp,
            "dataMessage": data_message,
        }
    }


@pytest.fixture
def make_raw():
    """Factory for raw receive envelopes."""
    return _make_raw


@pytest.fixture
def inbound():
    """Factory for InboundMessage(body, raw)."""
    def _inbound(body, **kwargs):
        return InboundMessage(body=body, raw=_make_raw(body, **kwargs))
    return _inbound


@pytest.fixture
def transport():
    """Transport double recording every send()."""
    fake = MagicMock()
    fake.send = AsyncMock(return_value={"timestamp": 1})
    return fake


@pytest.fixture
def bot(transport):
    instance = Bot()
    instance.transport = transport
    return instance


@pytest.fixture
def sent(transport):
    """Texts passed to transport.send(), in order."""
    def _sent():
        return [call.args[1] for call in transport.send.await_args_list]
    return _sent
