"""
Transport Session.
Authenticates, connects, and holds one logical server session; the single choke point for interactions.
"""

import asyncio
import itertools
from typing import Any, Callable
from urllib.parse import quote, urlsplit
from uuid import uuid4

from ..core import errors
from ..core.config import settings
from ..core.log import Loggable
from ..core.models import (
    ClientDescriptor,
    Credentials,
    Interaction,
    SessionArtifacts,
    SessionContext,
    SessionInfo,
)
from ..protocol.decoder import decode_message
from ..protocol.handlers import HandlerSet
from ..protocol.interactions import FORM_OPENING_INTERACTIONS, invoke_params, open_session_params
from .auth import Authenticator
from .channel import RpcChannel


OPEN_SESSION_CALLBACK = "0"


def channel_url(artifacts: SessionArtifacts) -> str:
    """ws(s)://host/instance/csh with the ack and CSRF query parameters."""
    parts = urlsplit(artifacts.base_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    path = parts.path.rstrip("/")
    token = quote(artifacts.csrf_token, safe="")
    return f"{scheme}://{parts.netloc}{path}/csh?ackseqnb=-1&csrftoken={token}"


def find_session_values(payload: Any) -> dict[str, Any]:
    """Search a decoded payload for the session identity keys, without recursion."""
    wanted = ("ServerSessionId", "SessionKey", "CompanyName")
    found: dict[str, Any] = {}
    stack = [payload]
    while stack and len(found) < len(wanted):
        item = stack.pop()
        if isinstance(item, dict):
            for key in wanted:
                if key not in found and item.get(key):
                    found[key] = item[key]
            stack.extend(reversed(list(item.values())))
        elif isinstance(item, list):
            stack.extend(reversed(item))
    return found


class TransportSession(Loggable):
    """
    One authenticated, connected server session.

    Every interaction passes through invoke(), which serializes callers,
    stamps a strictly increasing callback id, and waits for the matching
    decoded response. Instances are independent: opening several pages
    concurrently means constructing several sessions.
    """

    name = "Session"

    def __init__(
        self,
        credentials: Credentials | None = None,
        authenticator: Authenticator | None = None,
        channel_factory: Callable[[], RpcChannel] | None = None,
        descriptor: ClientDescriptor | None = None,
        rpc_timeout: float | None = None,
        user_agent: str | None = None,
    ):
        """
        Initialize session.

        Args:
            credentials: Login credentials (defaults to config)
            authenticator: Login implementation
            channel_factory: Builds the duplex channel on connect
            descriptor: Client identity reported at session open
            rpc_timeout: Per-interaction timeout in seconds (defaults to config)
            user_agent: Handshake User-Agent (defaults to config)
        """
        self.credentials = credentials or Credentials.from_settings()
        self.authenticator = authenticator or Authenticator()
        self.channel_factory = channel_factory or RpcChannel
        self.descriptor = descriptor or ClientDescriptor()
        self.rpc_timeout = rpc_timeout if rpc_timeout is not None else settings.rpc_timeout
        self.user_agent = user_agent or settings.user_agent

        self.artifacts: SessionArtifacts | None = None
        self.channel: RpcChannel | None = None
        self.info: SessionInfo | None = None
        self.role_center_form_id: str | None = None
        self.open_form_ids: list[str] = []

        self._callback_ids = itertools.count(1)
        self.last_callback_id: int = 0
        self._lock = asyncio.Lock()

    @property
    def tenant_id(self) -> str:
        return self.credentials.tenant_id

    @property
    def company(self) -> str | None:
        if self.info and self.info.company_name:
            return self.info.company_name
        return self.credentials.company

    @property
    def is_open(self) -> bool:
        return self.info is not None and self.channel is not None and self.channel.is_open

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def authenticate(self, credentials: Credentials | None = None) -> SessionArtifacts:
        """
        Sign in with the web client.

        Raises:
            AuthenticationError: Rejected credentials or unparseable login page
            ConnectionError: Network failure
        """
        if credentials is not None:
            self.credentials = credentials
        self.artifacts = await self.authenticator.authenticate(self.credentials)
        return self.artifacts

    async def connect(self) -> None:
        """
        Open the duplex channel with the login cookies.

        Raises:
            ValidationError: If called before authenticate
            ConnectionError: On handshake failure
        """
        if self.artifacts is None:
            raise errors.ValidationError("authenticate() must succeed before connect()")

        channel = self.channel_factory()
        await channel.connect(
            channel_url(self.artifacts),
            headers={
                "Cookie": self.artifacts.cookie_header(),
                "User-Agent": self.user_agent,
            },
        )
        self.channel = channel

    async def open_session(self, descriptor: ClientDescriptor | None = None) -> SessionContext:
        """
        Send OpenSession and read the server-assigned identity.

        Raises:
            ProtocolError: If the session acknowledgement is absent
        """
        if self.channel is None:
            raise errors.ConnectionError("Channel is not connected")
        if descriptor is not None:
            self.descriptor = descriptor

        params = open_session_params(self.descriptor, self.tenant_id, self.credentials.company)
        async with self._lock:
            request_id = str(uuid4())
            await self.channel.send({
                "jsonrpc": "2.0",
                "method": "OpenSession",
                "params": [params],
                "id": request_id,
            })
            message = await self._await_message(request_id)
            payload = decode_message(message)

        found = find_session_values(payload)
        if not found.get("ServerSessionId") or not found.get("SessionKey"):
            raise errors.ProtocolError(
                "OpenSession response has no session acknowledgement",
                context={"found_keys": sorted(found)},
            )

        self.info = SessionInfo(
            server_session_id=str(found["ServerSessionId"]),
            session_key=str(found["SessionKey"]),
            company_name=found.get("CompanyName"),
        )

        if isinstance(payload, list):
            handlers = HandlerSet.decode(payload)
            shown = handlers.shown_form_ids()
            if shown:
                self.role_center_form_id = shown[0]
            for form_id in shown:
                self.track_open_form(form_id)

        self.log(
            f"Session open (company {self.info.company_name or 'default'}, "
            f"role center {self.role_center_form_id or 'none'})"
        )
        return SessionContext(session=self.info, role_center_form_id=self.role_center_form_id)

    async def disconnect(self) -> None:
        """Close the channel and forget session state. Idempotent."""
        channel, self.channel = self.channel, None
        if channel is not None:
            await channel.close()
        self.info = None
        self.role_center_form_id = None
        self.open_form_ids = []

    # ==========================================================================
    # Interactions
    # ==========================================================================

    async def invoke(self, interaction: Interaction) -> HandlerSet:
        """
        Send one interaction and wait for its decoded response.

        Concurrent callers are queued; at most one interaction is in flight.

        Args:
            interaction: Unsent interaction

        Returns:
            Decoded handlers of the response

        Raises:
            ConnectionError: Session not open, socket closed, or timeout
            ProtocolError: JSON-RPC error or undecodable payload
            ParseError: Payload is not a handler array
        """
        if self.info is None or self.channel is None:
            raise errors.ConnectionError("Session is not open")

        async with self._lock:
            callback = next(self._callback_ids)
            self.last_callback_id = callback
            sent = interaction.with_callback(str(callback))

            request_id = str(uuid4())
            params = invoke_params(
                sent,
                self.descriptor,
                self.info,
                self.tenant_id,
                self.open_form_ids,
                sequence=callback,
                last_ack=self.channel.last_server_sequence,
            )
            self.log(f"Invoke {sent.name} (callback {sent.callback_id}, form {sent.form_id or '-'})")
            await self.channel.send({
                "jsonrpc": "2.0",
                "method": "Invoke",
                "params": [params],
                "id": request_id,
            })
            handlers = await self._await_handlers(request_id, callback)

        opened = handlers.shown_form_ids()
        completion = handlers.callback()
        if sent.name in FORM_OPENING_INTERACTIONS and completion is not None and completion.form_id:
            opened.append(completion.form_id)
        for form_id in opened:
            self.track_open_form(form_id)
        return handlers

    async def _await_message(self, request_id: str) -> dict[str, Any]:
        """Next message answering this request; stale JSON-RPC replies are dropped."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.rpc_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise errors.ConnectionError(
                    f"No response within {self.rpc_timeout:.0f}s",
                    context={"timeout": self.rpc_timeout},
                )
            message = await self.channel.receive(remaining)

            message_id = message.get("id")
            if message_id is not None and message_id != request_id:
                self.log(f"Discarding late reply to request {message_id}")
                continue

            if "error" in message:
                error = message.get("error") or {}
                if not isinstance(error, dict):
                    error = {"message": str(error)}
                raise errors.ProtocolError(
                    f"Server returned error: {error.get('message', 'unknown')}",
                    context={"rpc_code": error.get("code")},
                )
            return message

    async def _await_handlers(self, request_id: str, callback: int) -> HandlerSet:
        while True:
            message = await self._await_message(request_id)
            handlers = HandlerSet.decode(decode_message(message))
            if self._is_stale(handlers, callback):
                self.log("Discarding response to an earlier callback")
                continue
            return handlers

    @staticmethod
    def _is_stale(handlers: HandlerSet, callback: int) -> bool:
        """True when every completed interaction belongs to an earlier callback."""
        completion = handlers.callback()
        if completion is None or not completion.completions:
            return False
        ids = []
        for item in completion.completions:
            if item.invocation_id is None or not item.invocation_id.isdigit():
                return False
            ids.append(int(item.invocation_id))
        return all(i < callback for i in ids)

    # ==========================================================================
    # Open Form Bookkeeping
    # ==========================================================================

    def track_open_form(self, form_id: str) -> None:
        """Record an open form id once; duplicates corrupt server bookkeeping."""
        if form_id not in self.open_form_ids:
            self.open_form_ids.append(form_id)

    def forget_open_form(self, form_id: str) -> None:
        if form_id in self.open_form_ids:
            self.open_form_ids.remove(form_id)
