"""
Interaction builders.
One canonical wire shape per interaction kind, plus the session-level request envelopes.
"""

import json
import time
from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import quote
from uuid import uuid4

from ..core import errors
from ..core.models import ClientDescriptor, Interaction, SessionInfo


TELEMETRY_TRACE_START = "traceStartInfo=%5BWeb%20Client%20-%20Web%20browser%5D%20OpenForm"
SHELL_CONTROL_PATH = "server:c[0]"
SERVER_CONTROL_PATH = "server:"

# Interactions whose callback completion carries the id of a form now open
FORM_OPENING_INTERACTIONS = frozenset({"OpenForm", "Navigate", "LoadForm"})


# ==============================================================================
# Form Lifecycle
# ==============================================================================

def load_form(form_id: str) -> Interaction:
    """Follow-up load of a sub-form that deferred its controls."""
    return Interaction(
        name="LoadForm",
        form_id=form_id,
        control_path=SERVER_CONTROL_PATH,
        named_parameters={"delayed": True, "openForm": True, "loadData": True},
    )


def close_form(form_id: str) -> Interaction:
    return Interaction(
        name="CloseForm",
        control_path=SERVER_CONTROL_PATH,
        named_parameters={"FormId": form_id},
    )


def open_form_query(tenant_id: str, company: str | None, page_id: str) -> str:
    """Query string the web client sends when opening a page directly."""
    parts = [
        ("tenant", tenant_id),
        ("company", company or ""),
        ("page", page_id),
        ("runinframe", "1"),
        ("dc", str(int(time.time() * 1000))),
        ("startTraceId", uuid4().hex),
        ("bookmark", ""),
    ]
    return "&".join(f"{key}={quote(value, safe='')}" for key, value in parts)


class OpenFormStrategy(Protocol):
    """How a logical page is opened; the interaction kind is swappable."""

    def build(
        self,
        page_id: str,
        tenant_id: str,
        company: str | None,
        shell_form_id: str | None = None,
    ) -> Interaction:
        ...


class DirectOpenStrategy:
    """Open the page by id with an OpenForm interaction."""

    def build(
        self,
        page_id: str,
        tenant_id: str,
        company: str | None,
        shell_form_id: str | None = None,
    ) -> Interaction:
        return Interaction(
            name="OpenForm",
            control_path=SHELL_CONTROL_PATH,
            named_parameters={"query": open_form_query(tenant_id, company, page_id)},
        )


class NavigateStrategy:
    """
    Open the page through a navigation-tree node of the role center.

    Requires the node GUID for every page it opens.
    """

    def __init__(self, node_ids: dict[str, str]):
        self.node_ids = dict(node_ids)

    def build(
        self,
        page_id: str,
        tenant_id: str,
        company: str | None,
        shell_form_id: str | None = None,
    ) -> Interaction:
        if page_id not in self.node_ids:
            raise errors.ValidationError(
                f"No navigation node registered for page {page_id}",
                context={"page_id": page_id},
            )
        if shell_form_id is None:
            raise errors.ValidationError("Navigate requires the role center form id")
        return Interaction(
            name="Navigate",
            form_id=shell_form_id,
            control_path=SHELL_CONTROL_PATH,
            named_parameters={
                "nodeId": self.node_ids[page_id],
                "source": None,
                "navigationTreeContext": 0,
            },
        )


# ==============================================================================
# Mutations
# ==============================================================================

def save_value(
    form_id: str,
    control_path: str,
    new_value: Any,
    control_name: str | None = None,
    queued_at: datetime | None = None,
) -> Interaction:
    """
    Field write.

    The parameter payload is pre-serialized to a string; the commit and
    busy-notification flags are fixed.
    """
    queued_at = queued_at or datetime.now(timezone.utc)
    payload = {
        "key": None,
        "newValue": new_value,
        "alwaysCommitChange": True,
        "notifyBusy": 1,
        "telemetry": {
            "Control name": control_name or control_path,
            "QueuedTime": queued_at.isoformat(),
        },
    }
    return Interaction(
        name="SaveValue",
        form_id=form_id,
        control_path=control_path,
        named_parameters=json.dumps(payload),
    )


def invoke_action(
    form_id: str,
    control_path: str,
    action: int | str,
    key: str | None = None,
) -> Interaction:
    """
    Action invocation by numeric system action code, or by name as a fallback.

    Args:
        form_id: Tracked form hosting the action
        control_path: Path of the action control
        action: System action code (preferred) or action name
        key: Opaque row bookmark for list-scoped actions
    """
    if isinstance(action, int) and not isinstance(action, bool):
        return Interaction(
            name="InvokeAction",
            form_id=form_id,
            control_path=control_path,
            system_action=int(action),
            named_parameters={
                "systemAction": int(action),
                "key": key,
                "repeaterControlTarget": None,
            },
        )
    return Interaction(
        name="InvokeAction",
        form_id=form_id,
        control_path=control_path,
        named_parameters={"actionName": str(action), "key": key},
    )


# ==============================================================================
# Request Envelopes
# ==============================================================================

def _time_zone_information(offset_minutes: int) -> dict[str, Any]:
    return {
        "timeZoneBaseOffset": offset_minutes,
        "dstOffset": 60,
        "dstPeriodStart": {"year": 0, "month": 3, "week": 5, "dayOfWeek": 0, "hour": 2},
        "dstPeriodEnd": {"year": 0, "month": 10, "week": 5, "dayOfWeek": 0, "hour": 3},
    }


def open_session_params(
    descriptor: ClientDescriptor,
    tenant_id: str,
    company: str | None = None,
) -> dict[str, Any]:
    """Parameters of the OpenSession request, including the role center OpenForm."""
    query = f"tenant={quote(tenant_id, safe='')}&startTraceId={uuid4().hex}&tid=undefined&runinframe=1"
    return {
        "openFormIds": [],
        "sessionId": "",
        "sequenceNo": None,
        "lastClientAckSequenceNumber": -1,
        "telemetryClientActivityId": None,
        "telemetryTraceStartInfo": TELEMETRY_TRACE_START,
        "navigationContext": descriptor.navigation_context(),
        "supportedExtensions": descriptor.supported_extensions(),
        "interactionsToInvoke": [{
            "interactionName": "OpenForm",
            "skipExtendingSessionLifetime": False,
            "namedParameters": json.dumps({"query": query}),
            "callbackId": "0",
        }],
        "tenantId": tenant_id,
        "company": company,
        "telemetryClientSessionId": descriptor.telemetry_session_id,
        "features": list(descriptor.features),
        "profile": "",
        "rememberCompany": False,
        "timeZoneInformation": _time_zone_information(descriptor.time_zone_offset_minutes),
        "profileDescription": {"Id": None, "Caption": None, "Description": None},
        "disableResponseSequencing": True,
    }


def invoke_params(
    interaction: Interaction,
    descriptor: ClientDescriptor,
    session: SessionInfo,
    tenant_id: str,
    open_form_ids: list[str],
    sequence: int,
    last_ack: int,
) -> dict[str, Any]:
    """Parameters of one Invoke request wrapping a sent interaction."""
    return {
        "openFormIds": list(open_form_ids),
        "sessionId": session.server_session_id,
        "sequenceNo": f"{descriptor.spa_instance_id}#{sequence}",
        "lastClientAckSequenceNumber": last_ack,
        "telemetryClientActivityId": None,
        "telemetryTraceStartInfo": TELEMETRY_TRACE_START,
        "navigationContext": descriptor.navigation_context(),
        "supportedExtensions": descriptor.supported_extensions(),
        "interactionsToInvoke": [interaction.to_wire()],
        "tenantId": tenant_id,
        "sessionKey": session.session_key,
        "company": session.company_name,
        "telemetryClientSessionId": descriptor.telemetry_session_id,
        "features": list(descriptor.features),
    }
