"""
Session Pool.
Independent sessions, one per concurrently open logical page.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

from ..core import errors
from ..core.config import settings
from ..core.log import Loggable
from ..core.models import MutationResult, PageDescriptor, TrackedForm
from ..core.result import Err, Result
from .client import BCClient


@dataclass
class _Slot:
    client: BCClient
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pages: set[str] = field(default_factory=set)


class SessionPool(Loggable):
    """
    Routes each logical page to its own session.

    A second page-open on one connection can return the first page's
    cached form, so a page never shares a session with another tracked
    page. Sessions are started on demand up to max_size and reused once
    their pages are released. A session whose channel closed is replaced
    on the next load.
    """

    name = "Pool"

    def __init__(
        self,
        max_size: int | None = None,
        client_factory: Callable[[], BCClient] | None = None,
    ):
        """
        Initialize pool.

        Args:
            max_size: Maximum concurrent sessions (defaults to config)
            client_factory: Builds an unstarted client
        """
        self.max_size = max_size or settings.pool_size
        self.client_factory = client_factory or BCClient
        self.slots: list[_Slot] = []
        self.assignments: dict[str, _Slot] = {}
        self._lock = asyncio.Lock()

    @property
    def pages(self) -> list[str]:
        return sorted(self.assignments)

    async def _drop_closed(self) -> None:
        """Stop and forget sessions whose channel has gone away, with their pages."""
        closed = [s for s in self.slots if not s.client.session.is_open]
        for slot in closed:
            self.slots.remove(slot)
            for page_id in slot.pages:
                self.assignments.pop(page_id, None)
            await slot.client.stop()
            self.log(f"Dropped closed session (pages: {sorted(slot.pages) or 'none'})")

    async def _slot_for(self, page_id: str) -> _Slot:
        async with self._lock:
            await self._drop_closed()
            if page_id in self.assignments:
                return self.assignments[page_id]

            for slot in self.slots:
                if not slot.pages:
                    slot.pages.add(page_id)
                    return slot

            if len(self.slots) >= self.max_size:
                raise errors.ValidationError(
                    f"All {self.max_size} sessions hold an open page; release one first",
                    context={"open_pages": self.pages},
                )

            client = self.client_factory()
            try:
                await client.start()
            except errors.BCMetaError:
                await client.stop()
                raise
            slot = _Slot(client=client, pages={page_id})
            self.slots.append(slot)
            self.log(f"Started session {len(self.slots)}/{self.max_size}")
            return slot

    def _tracked_slot(self, page_id: str) -> _Slot:
        slot = self.assignments.get(page_id)
        if slot is None:
            raise errors.ValidationError(f"Page {page_id} is not open", context={"page_id": page_id})
        return slot

    async def load_page(self, page_id: str | int) -> Result[PageDescriptor]:
        page_id = str(page_id)
        try:
            slot = await self._slot_for(page_id)
        except errors.BCMetaError as e:
            return Err(e)

        async with slot.lock:
            result = await slot.client.load_page(page_id)

        async with self._lock:
            if result.is_ok:
                self.assignments[page_id] = slot
            elif page_id not in slot.client.tracked_pages:
                slot.pages.discard(page_id)
        return result

    async def release_page(self, page_id: str | int) -> Result[TrackedForm]:
        page_id = str(page_id)
        try:
            slot = self._tracked_slot(page_id)
        except errors.BCMetaError as e:
            return Err(e)

        async with slot.lock:
            result = await slot.client.release_page(page_id)

        if result.is_ok:
            async with self._lock:
                self.assignments.pop(page_id, None)
                slot.pages.discard(page_id)
        return result

    def tracked_form(self, page_id: str | int) -> TrackedForm | None:
        slot = self.assignments.get(str(page_id))
        if slot is None:
            return None
        return slot.client.tracked_pages.get(str(page_id))

    async def set_field(
        self,
        page_id: str | int,
        control_path: str,
        new_value: Any,
        form_id: str | None = None,
        control_name: str | None = None,
    ) -> Result[MutationResult]:
        """Write a field on an open page; the form defaults to the page's shell."""
        page_id = str(page_id)
        try:
            slot = self._tracked_slot(page_id)
        except errors.BCMetaError as e:
            return Err(e)

        target = form_id or slot.client.tracked_pages[page_id].form_id
        async with slot.lock:
            return await slot.client.set_field(target, control_path, new_value, control_name)

    async def invoke_action(
        self,
        page_id: str | int,
        control_path: str,
        action: int | str,
        form_id: str | None = None,
        key: str | None = None,
    ) -> Result[MutationResult]:
        page_id = str(page_id)
        try:
            slot = self._tracked_slot(page_id)
        except errors.BCMetaError as e:
            return Err(e)

        target = form_id or slot.client.tracked_pages[page_id].form_id
        async with slot.lock:
            return await slot.client.invoke_action(target, control_path, action, key)

    async def close(self) -> None:
        """Stop every session."""
        async with self._lock:
            slots, self.slots = self.slots, []
            self.assignments.clear()
        for slot in slots:
            await slot.client.stop()
        if slots:
            self.log(f"Closed {len(slots)} sessions")
