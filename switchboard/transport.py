"""signal-cli REST API transport.

Receives envelopes over the json-rpc websocket and feeds them to
Bot.handle(); sends replies through ``POST /v2/send``. Connection
problems are logged and retried, never raised into the router.

Key classes:
    SignalTransport: aiohttp session, account lookup, send, receive loop.
"""

import asyncio
import hashlib
import json
import time as _time
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import urlparse

import aiohttp
import structlog

from .message import InboundMessage, Message, extract_body

if TYPE_CHECKING:
    from .bot import Bot

logger = structlog.get_logger("switchboard.transport")

DEDUP_WINDOW_SECONDS = 60
MAX_RECONNECT_DELAY = 300


def log_task_exception(task: asyncio.Task) -> None:
    """Log exceptions from fire-and-forget dispatch tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("dispatch_task_failed", error=str(exc), exc_type=type(exc).__name__)


class SignalTransport:
    """Messaging transport backed by signal-cli-rest-api.

    Args:
        api_url: Base URL of the REST API (e.g. ``http://127.0.0.1:8080``).
        account: Registered account number. Looked up from
            ``/v1/accounts`` on start() when omitted.
        session: Optional externally managed aiohttp session.
    """

    def __init__(
        self,
        api_url: str,
        account: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.account = account
        self.session = session
        self._owns_session = session is None
        self.running = False
        self._processed = OrderedDict()  # Dedup: msg_hash -> timestamp
        self._tasks = set()

    def attach(self, bot: "Bot") -> "SignalTransport":
        """Make this transport the one ``bot`` replies through."""
        bot.transport = self
        bot.account = self.account
        return self

    async def start(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession()
        self.running = True

        parsed = urlparse(self.api_url)
        if (
            parsed.hostname not in ("127.0.0.1", "localhost", "::1")
            and parsed.scheme != "https"
        ):
            logger.warning(
                "insecure_signal_api_url", url=self.api_url,
                msg="Non-localhost Signal API should use HTTPS",
            )

        if not self.account:
            await self._get_account()

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None
        logger.info("transport_stopped")

    async def _get_account(self, max_attempts: int = 12) -> None:
        """Look up the registered account with retry."""
        base_delay = 5
        max_delay = 15

        for attempt in range(1, max_attempts + 1):
            try:
                url = f"{self.api_url}/v1/accounts"
                async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                    if resp.status == 200:
                        accounts = await resp.json()
                        if accounts:
                            acct = accounts[0]
                            self.account = acct if isinstance(acct, str) else acct.get("number")
                            logger.info("account_found", account=self.account)
                        else:
                            logger.warning("no_accounts_registered")
                        return
                    logger.warning("account_request_failed", status=resp.status)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                delay = min(base_delay * attempt, max_delay)
                logger.warning(
                    "account_request_error", error=str(e),
                    attempt=attempt, retry_delay=delay,
                )
                if attempt < max_attempts:
                    await asyncio.sleep(delay)

        logger.error("account_request_failed_all_attempts", attempts=max_attempts)

    async def refresh_account(self, max_attempts: int = 12) -> Optional[str]:
        """Re-read the registered account, e.g. after a device link is scanned."""
        await self._get_account(max_attempts)
        return self.account

    # --- Sending ---

    def _send_payload(self, chat: str, content: str, quote: Optional[Message]) -> dict:
        payload = {
            "message": content,
            "number": self.account,
            "recipients": [chat],
        }
        if quote is not None and quote.id is not None:
            payload["quote_timestamp"] = quote.id
            payload["quote_author"] = quote.sender
            payload["quote_message"] = quote.body
        return payload

    async def send(self, chat: str, content: str, *, quote: Optional[Message] = None) -> Any:
        """Send ``content`` to a recipient or ``group.<id>``.

        Returns the decoded API response, or None when sending failed.
        """
        if self.session is None:
            logger.error("send_without_session", recipient="..." + chat[-4:])
            return None

        url = f"{self.api_url}/v2/send"
        try:
            async with self.session.post(url, json=self._send_payload(chat, content, quote)) as resp:
                if resp.status != 201:
                    body = await resp.text()
                    logger.warning("send_failed", status=resp.status, body=body[:200])
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("send_error", error=str(e))
            return None

    # --- Device linking ---

    async def link_device(self, bot: "Bot") -> Optional[str]:
        """Request a device link URI and hand it to the bot's pairing hooks."""
        pairing = bot.config.pairing
        device_name = pairing.device_name if pairing else "switchboard"
        url = f"{self.api_url}/v1/qrcodelink/raw"
        try:
            async with self.session.get(url, params={"device_name": device_name}) as resp:
                if resp.status != 200:
                    logger.warning("link_request_failed", status=resp.status)
                    return None
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("link_request_error", error=str(e))
            return None

        link = data.get("device_link_uri") if isinstance(data, dict) else None
        if link:
            await bot.emit_pairing(link)
        return link

    # --- Receiving ---

    def _is_duplicate(self, envelope: dict, body: str) -> bool:
        timestamp = envelope.get("timestamp", 0)
        msg_hash = hashlib.sha256(f"{timestamp}:{body.strip()}".encode()).hexdigest()
        if msg_hash in self._processed:
            return True

        now = _time.time()
        self._processed[msg_hash] = now
        cutoff = now - DEDUP_WINDOW_SECONDS
        while self._processed:
            oldest_key, oldest_time = next(iter(self._processed.items()))
            if oldest_time >= cutoff:
                break
            self._processed.pop(oldest_key)
        return False

    async def dispatch(self, bot: "Bot", data: Any) -> None:
        """Hand one decoded websocket frame to ``bot``."""
        if not isinstance(data, dict):
            return
        body = extract_body(data)
        if not body.strip():
            return
        envelope = data.get("envelope", {})
        if self._is_duplicate(envelope, body):
            logger.debug("duplicate_message_skipped", timestamp=envelope.get("timestamp"))
            return
        await bot.handle(InboundMessage(body=body, raw=data))

    def _spawn(self, coro) -> asyncio.Task:
        # One task per message; dispatches may interleave
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(log_task_exception)
        return task

    async def listen(self, bot: "Bot") -> None:
        """Receive messages over the websocket until stopped."""
        if not self.account:
            logger.error("no_account_for_polling")
            return

        ws_base = self.api_url.replace("http://", "ws://").replace("https://", "wss://")
        ws_url = f"{ws_base}/v1/receive/{self.account}"
        reconnect_delay = 5

        while self.running:
            try:
                logger.info("websocket_connecting", url=ws_url)
                async with self.session.ws_connect(ws_url, heartbeat=30) as ws:
                    logger.info("websocket_connected")
                    reconnect_delay = 5
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            try:
                                data = json.loads(msg.data)
                            except json.JSONDecodeError:
                                logger.warning("invalid_json", data=msg.data[:100])
                                continue
                            self._spawn(self.dispatch(bot, data))
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            logger.error("websocket_error", error=str(ws.exception()))
                            break
                        elif msg.type == aiohttp.WSMsgType.CLOSED:
                            logger.info("websocket_closed")
                            break
            except asyncio.CancelledError:
                break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error("websocket_exception", error=str(e), retry_delay=reconnect_delay)
                await asyncio.sleep(reconnect_delay)
                reconnect_delay = min(reconnect_delay * 2, MAX_RECONNECT_DELAY)
