"""
Page Loader.
Opens a logical page, loads eligible sub-forms sequentially, and tracks the resulting form binding.
"""

import asyncio
from enum import Enum

from ..core import errors
from ..core.log import Loggable
from ..core.models import PageDescriptor, TrackedForm
from ..core.result import Err, Ok, Result
from ..protocol import interactions
from ..protocol.eligibility import LoadEligibilityPolicy, default_policy, eligible_sub_forms
from ..protocol.form_tree import (
    ControlNode,
    FormTree,
    SubForm,
    apply_property_changes,
    extract_form_tree,
    find_form_payload,
)
from ..protocol.handlers import HandlerSet
from ..protocol.interactions import DirectOpenStrategy, OpenFormStrategy
from ..transport.session import TransportSession
from .aggregator import MetadataAggregator, page_id_from_form


class LoaderState(str, Enum):
    """States of one page load."""
    IDLE = "idle"
    OPENING = "opening"
    SHELL_RECEIVED = "shell_received"
    LOADING_CHILDREN = "loading_children"
    AGGREGATED = "aggregated"
    READY = "ready"
    FAILED = "failed"


TRANSITIONS: dict[LoaderState, set[LoaderState]] = {
    LoaderState.IDLE: {LoaderState.OPENING},
    LoaderState.OPENING: {LoaderState.SHELL_RECEIVED, LoaderState.FAILED},
    LoaderState.SHELL_RECEIVED: {LoaderState.LOADING_CHILDREN, LoaderState.FAILED},
    LoaderState.LOADING_CHILDREN: {LoaderState.AGGREGATED, LoaderState.FAILED},
    LoaderState.AGGREGATED: {LoaderState.READY, LoaderState.FAILED},
    LoaderState.READY: {LoaderState.OPENING},
    LoaderState.FAILED: {LoaderState.OPENING},
}


def raise_server_rejection(response: HandlerSet, page_id: str | None) -> None:
    """Turn an error or validation message from the server into BusinessLogicError."""
    rejections = response.server_messages("error", "validation")
    if rejections:
        raise errors.BusinessLogicError(
            rejections[0].message or "Server rejected the request",
            page_id=page_id,
            context={"messages": [m.message for m in rejections], "tags": response.tags()},
        )


class PageLoader(Loggable):
    """
    Drives one page load through Opening, ShellReceived, LoadingChildren,
    Aggregated, and then Ready or Failed.

    The tracked-form map is this session's single source of truth for
    which server form belongs to which logical page. Loads and releases
    are serialized by the loader's lock, so the map is only touched
    sequentially.
    """

    name = "PageLoader"

    def __init__(
        self,
        session: TransportSession,
        aggregator: MetadataAggregator | None = None,
        policy: LoadEligibilityPolicy | None = None,
        open_strategy: OpenFormStrategy | None = None,
    ):
        """
        Initialize page loader.

        Args:
            session: Transport session that owns the tracked forms
            aggregator: Descriptor builder
            policy: Sub-form load eligibility rule
            open_strategy: Interaction used to open a page
        """
        self.session = session
        self.aggregator = aggregator or MetadataAggregator()
        self.policy = policy or default_policy
        self.open_strategy = open_strategy or DirectOpenStrategy()

        self.state = LoaderState.IDLE
        self.remaining_loads = 0
        self.tracked: dict[str, TrackedForm] = {}
        self._lock = asyncio.Lock()

    # ==========================================================================
    # Tracked Forms
    # ==========================================================================

    def is_tracked_form(self, form_id: str) -> bool:
        """True if the form id is a shell or loaded sub-form of a tracked page."""
        return any(
            t.form_id == form_id or form_id in t.sub_form_ids
            for t in self.tracked.values()
        )

    def page_for_form(self, form_id: str) -> str | None:
        for page_id, tracked in self.tracked.items():
            if tracked.form_id == form_id:
                return page_id
        return None

    def _check_collision(self, page_id: str, form_id: str) -> None:
        bound = self.page_for_form(form_id)
        if bound is not None and bound != page_id:
            raise errors.FormIdCollisionError(form_id, requested_page=page_id, bound_page=bound)

    # ==========================================================================
    # Loading
    # ==========================================================================

    def _transition(self, state: LoaderState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal loader transition {self.state.value} -> {state.value}")
        self.state = state

    async def load_page(self, page_id: str | int) -> Result[PageDescriptor]:
        """
        Open a page and return its aggregated descriptor.

        Args:
            page_id: Logical page id

        Returns:
            Ok(PageDescriptor) or Err with the typed failure; no partial
            descriptor is ever returned
        """
        page_id = str(page_id).strip()
        if not page_id:
            return Err(errors.ValidationError("Page id must not be empty"))

        async with self._lock:
            self._transition(LoaderState.OPENING)
            try:
                descriptor = await self._load(page_id)
            except errors.BCMetaError as e:
                self._fail()
                self.log(f"Page {page_id} failed: {e.code} {e.message}")
                return Err(e)
            except BaseException:
                # cancelled or crashed loads must not pin the state machine
                self._fail()
                raise
        return Ok(descriptor)

    def _fail(self) -> None:
        self.state = LoaderState.FAILED
        self.remaining_loads = 0

    async def _load(self, page_id: str) -> PageDescriptor:
        interaction = self.open_strategy.build(
            page_id,
            self.session.tenant_id,
            self.session.company,
            shell_form_id=self.session.role_center_form_id,
        )
        response = await self.session.invoke(interaction)
        tree = self._receive_shell(page_id, response)
        shell_id, shell = tree.shell_id, tree.shell

        self._transition(LoaderState.SHELL_RECEIVED)
        eligible = eligible_sub_forms(tree.sub_forms, self.policy)
        self.log(
            f"Shell {shell_id}: {len(tree.sub_forms)} sub-forms, "
            f"{len(eligible)} eligible for load"
        )

        self._transition(LoaderState.LOADING_CHILDREN)
        self.remaining_loads = len(eligible)
        loaded: list[ControlNode] = []
        for sub_form in eligible:
            loaded.append(await self._load_sub_form(page_id, sub_form))
            self.remaining_loads -= 1

        self._transition(LoaderState.AGGREGATED)
        descriptor = self.aggregator.aggregate(page_id, shell, loaded)

        self._transition(LoaderState.READY)
        self._bind(page_id, descriptor)
        return descriptor

    def _receive_shell(self, page_id: str, response: HandlerSet) -> FormTree:
        raise_server_rejection(response, page_id)

        shown = response.events("FormToShow")
        if not shown and response.stack_emptied:
            raise errors.BusinessLogicError(
                f"Page {page_id} could not be opened",
                page_id=page_id,
                context={"tags": response.tags()},
            )

        event = response.require_event("FormToShow")
        completion = response.callback()
        shell_id = (completion.form_id if completion else None) or event.form_id
        payload = find_form_payload(response, shell_id)
        if payload is None:
            raise errors.ParseError(
                f"No form hierarchy for form {shell_id} in open response",
                present_tags=response.tags(),
                context={"page_id": page_id},
            )

        self._check_collision(page_id, shell_id)

        tree = extract_form_tree(payload)
        served = page_id_from_form(tree.shell, page_id)
        if served != page_id:
            raise errors.ProtocolError(
                f"Open of page {page_id} returned page {served}",
                context={"page_id": page_id, "served_page": served, "form_id": shell_id},
            )
        apply_property_changes(tree.shell, response.state_changes(shell_id))
        return tree

    async def _load_sub_form(self, page_id: str, sub_form: SubForm) -> ControlNode:
        """Load one sub-form; the response's own tree wins over the embedded one."""
        response = await self.session.invoke(interactions.load_form(sub_form.server_id))
        raise_server_rejection(response, page_id)

        payload = find_form_payload(response, sub_form.server_id)
        form = ControlNode.from_raw(payload) if payload is not None else sub_form.form
        updated = apply_property_changes(form, response.state_changes(sub_form.server_id))
        self.log(f"Loaded sub-form {sub_form.server_id} ({updated} property changes)")
        return form

    def _bind(self, page_id: str, descriptor: PageDescriptor) -> None:
        self._check_collision(page_id, descriptor.form_id)
        self.tracked[page_id] = TrackedForm(
            page_id=page_id,
            form_id=descriptor.form_id,
            caption=descriptor.caption,
            sub_form_ids=list(descriptor.sub_form_ids),
        )
        self.session.track_open_form(descriptor.form_id)
        for sub_id in descriptor.sub_form_ids:
            self.session.track_open_form(sub_id)

    # ==========================================================================
    # Release
    # ==========================================================================

    async def release_page(self, page_id: str | int) -> Result[TrackedForm]:
        """
        Close a tracked page's form and drop its binding.

        Returns:
            Ok(released binding) or Err(ValidationError) for an untracked page
        """
        page_id = str(page_id)
        async with self._lock:
            tracked = self.tracked.get(page_id)
            if tracked is None:
                return Err(errors.ValidationError(f"Page {page_id} is not tracked", context={"page_id": page_id}))

            try:
                response = await self.session.invoke(interactions.close_form(tracked.form_id))
                raise_server_rejection(response, page_id)
            except errors.BCMetaError as e:
                return Err(e)

            del self.tracked[page_id]
            self.session.forget_open_form(tracked.form_id)
            for sub_id in tracked.sub_form_ids:
                self.session.forget_open_form(sub_id)
        self.log(f"Released page {page_id} (form {tracked.form_id})")
        return Ok(tracked)
