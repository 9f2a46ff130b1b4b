"""
Client façade.
One authenticated session with its page loader and mutation primitives.
"""

from typing import Any

from ..core.log import Loggable
from ..core.models import (
    ClientDescriptor,
    Credentials,
    MutationResult,
    PageDescriptor,
    SessionContext,
    TrackedForm,
)
from ..core.result import Result
from ..protocol.eligibility import LoadEligibilityPolicy
from ..protocol.interactions import OpenFormStrategy
from ..transport.session import TransportSession
from .mutations import MutationPrimitives
from .page_loader import PageLoader


class BCClient(Loggable):
    """
    Narrow interface over one server session.

    Use as an async context manager, or call start() and stop().
    """

    name = "Client"

    def __init__(
        self,
        credentials: Credentials | None = None,
        session: TransportSession | None = None,
        policy: LoadEligibilityPolicy | None = None,
        open_strategy: OpenFormStrategy | None = None,
        descriptor: ClientDescriptor | None = None,
    ):
        """
        Initialize client.

        Args:
            credentials: Login credentials (defaults to config)
            session: Pre-built transport session
            policy: Sub-form load eligibility rule
            open_strategy: Interaction used to open a page
            descriptor: Client identity reported at session open
        """
        self.session = session or TransportSession(credentials=credentials, descriptor=descriptor)
        self.loader = PageLoader(self.session, policy=policy, open_strategy=open_strategy)
        self.mutations = MutationPrimitives(self.loader)
        self.context: SessionContext | None = None

    async def start(self) -> SessionContext:
        """Authenticate, connect, and open the session."""
        await self.session.authenticate()
        await self.session.connect()
        self.context = await self.session.open_session()
        return self.context

    async def stop(self) -> None:
        await self.session.disconnect()
        self.loader.tracked.clear()
        self.context = None

    async def __aenter__(self) -> "BCClient":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def tracked_pages(self) -> dict[str, TrackedForm]:
        return dict(self.loader.tracked)

    async def load_page(self, page_id: str | int) -> Result[PageDescriptor]:
        return await self.loader.load_page(page_id)

    async def release_page(self, page_id: str | int) -> Result[TrackedForm]:
        return await self.loader.release_page(page_id)

    async def set_field(
        self,
        form_id: str,
        control_path: str,
        new_value: Any,
        control_name: str | None = None,
    ) -> Result[MutationResult]:
        return await self.mutations.set_field_value(form_id, control_path, new_value, control_name)

    async def invoke_action(
        self,
        form_id: str,
        control_path: str,
        action: int | str,
        key: str | None = None,
    ) -> Result[MutationResult]:
        return await self.mutations.invoke_action(form_id, control_path, action, key)
