"""
Handler Dispatcher.
Decodes heterogeneous positional handler arrays into one typed variant per handler kind.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from ..core import errors


# ==============================================================================
# Handler Tags
# ==============================================================================

EVENT_RAISED = "DN.LogicalClientEventRaisingHandler"
CALLBACK_COMPLETED = "DN.CallbackResponseProperties"
STATE_CHANGED = "DN.LogicalClientChangeHandler"
SESSION_INIT = "DN.SessionInitHandler"
STACK_EMPTIED = "DN.EmptyPageStackHandler"

SERVER_MESSAGE_TAGS = {
    "DN.ErrorMessageProperties": "error",
    "DN.ErrorDialogProperties": "error",
    "DN.ValidationMessageProperties": "validation",
    "DN.ConfirmDialogProperties": "confirm",
    "DN.YesNoDialogProperties": "confirm",
}

FORM_EVENTS = ("FormToShow", "DialogToShow")


# ==============================================================================
# Variants
# ==============================================================================

@dataclass(frozen=True)
class EventRaised:
    """Parameter 0 = event name, 1 = optional payload, 2 = optional metadata."""
    tag: str
    event_name: str
    payload: dict[str, Any] | None = None
    metadata: Any = None

    @property
    def form_id(self) -> str | None:
        if self.payload is None:
            return None
        server_id = self.payload.get("ServerId")
        return str(server_id) if server_id is not None else None


@dataclass(frozen=True)
class CompletedInteraction:
    """One interaction acknowledged by a callback completion."""
    invocation_id: str | None
    duration: float | None
    reason: Any = None
    value: Any = None


@dataclass(frozen=True)
class CallbackCompleted:
    """Carries the server-assigned form id and per-interaction completion."""
    tag: str
    sequence_number: int | None
    completions: tuple[CompletedInteraction, ...] = ()

    @property
    def form_id(self) -> str | None:
        """Form id assigned to the completed interaction, if any."""
        for completion in self.completions:
            if isinstance(completion.value, (str, int)) and not isinstance(completion.value, bool):
                return str(completion.value)
        return None

    def completes(self, callback_id: str) -> bool:
        return any(c.invocation_id == callback_id for c in self.completions)


@dataclass(frozen=True)
class StateChanged:
    """Incremental change list for one form."""
    tag: str
    form_id: str
    changes: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class StackEmptied:
    """The server's page stack became empty."""
    tag: str


@dataclass(frozen=True)
class SessionInit:
    """Server-assigned session identity."""
    tag: str
    server_session_id: str | None
    session_key: str | None
    company_name: str | None = None


@dataclass(frozen=True)
class ServerMessage:
    """Error, validation, or confirmation message raised by the server."""
    tag: str
    kind: str
    message: str


@dataclass(frozen=True)
class UnknownHandler:
    """A tag this client does not interpret; parameters are kept raw."""
    tag: str
    parameters: tuple[Any, ...] = ()


Handler = (
    EventRaised
    | CallbackCompleted
    | StateChanged
    | StackEmptied
    | SessionInit
    | ServerMessage
    | UnknownHandler
)


# ==============================================================================
# Per-kind Decoders
# ==============================================================================

def _shape_error(tag: str, detail: str) -> errors.ParseError:
    return errors.ParseError(f"Malformed {tag} handler: {detail}", present_tags=[tag])


def _first_dict(tag: str, params: list[Any]) -> dict[str, Any]:
    if not params or not isinstance(params[0], dict):
        raise _shape_error(tag, "parameter 0 must be an object")
    return params[0]


def _decode_event(tag: str, params: list[Any]) -> EventRaised:
    if not params or not isinstance(params[0], str):
        raise _shape_error(tag, "parameter 0 must be an event name")
    payload = params[1] if len(params) > 1 else None
    if payload is not None and not isinstance(payload, dict):
        raise _shape_error(tag, "parameter 1 must be an object")
    metadata = params[2] if len(params) > 2 else None
    return EventRaised(tag=tag, event_name=params[0], payload=payload, metadata=metadata)


def _decode_callback(tag: str, params: list[Any]) -> CallbackCompleted:
    body = _first_dict(tag, params)
    completions = []
    for item in body.get("CompletedInteractions") or []:
        if not isinstance(item, dict):
            raise _shape_error(tag, "completed interaction must be an object")
        result = item.get("Result") if isinstance(item.get("Result"), dict) else {}
        invocation_id = item.get("InvocationId")
        completions.append(CompletedInteraction(
            invocation_id=str(invocation_id) if invocation_id is not None else None,
            duration=item.get("Duration"),
            reason=result.get("reason"),
            value=result.get("value"),
        ))
    return CallbackCompleted(
        tag=tag,
        sequence_number=body.get("SequenceNumber"),
        completions=tuple(completions),
    )


def _decode_change(tag: str, params: list[Any]) -> StateChanged:
    if len(params) < 2 or params[0] is None:
        raise _shape_error(tag, "expected [formId, changes]")
    changes = params[1] or []
    if not isinstance(changes, list):
        raise _shape_error(tag, "parameter 1 must be a change list")
    return StateChanged(
        tag=tag,
        form_id=str(params[0]),
        changes=tuple(c for c in changes if isinstance(c, dict)),
    )


def _decode_session_init(tag: str, params: list[Any]) -> SessionInit:
    body = _first_dict(tag, params)
    return SessionInit(
        tag=tag,
        server_session_id=body.get("ServerSessionId"),
        session_key=body.get("SessionKey"),
        company_name=body.get("CompanyName"),
    )


def _decode_stack_emptied(tag: str, params: list[Any]) -> StackEmptied:
    return StackEmptied(tag=tag)


def _decode_server_message(tag: str, params: list[Any]) -> ServerMessage:
    body = params[0] if params and isinstance(params[0], dict) else {}
    message = body.get("Message") or body.get("Caption") or ""
    return ServerMessage(tag=tag, kind=SERVER_MESSAGE_TAGS[tag], message=str(message))


DECODERS: dict[str, Callable[[str, list[Any]], Handler]] = {
    EVENT_RAISED: _decode_event,
    CALLBACK_COMPLETED: _decode_callback,
    STATE_CHANGED: _decode_change,
    SESSION_INIT: _decode_session_init,
    STACK_EMPTIED: _decode_stack_emptied,
    **{tag: _decode_server_message for tag in SERVER_MESSAGE_TAGS},
}


def decode_handler(raw: Any) -> Handler:
    """
    Decode one element of a response array.

    Args:
        raw: Dict with handlerType and a positional parameters list

    Returns:
        Typed handler variant

    Raises:
        ParseError: If the element is not a handler or a known tag is malformed
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("handlerType"), str):
        raise errors.ParseError("Response element is not a handler", context={"element": repr(raw)[:200]})

    tag = raw["handlerType"]
    params = raw.get("parameters") or []
    if not isinstance(params, list):
        raise _shape_error(tag, "parameters must be a list")

    decoder = DECODERS.get(tag)
    if decoder is None:
        return UnknownHandler(tag=tag, parameters=tuple(params))
    return decoder(tag, params)


# ==============================================================================
# Decoded Response
# ==============================================================================

@dataclass
class HandlerSet:
    """All handlers of one decoded response, in arrival order."""
    handlers: list[Handler] = field(default_factory=list)

    @classmethod
    def decode(cls, payload: Any) -> "HandlerSet":
        """
        Decode a full response payload.

        Raises:
            ParseError: If the payload is not a handler array
        """
        if not isinstance(payload, list):
            raise errors.ParseError(
                "Response payload is not a handler array",
                context={"payload_type": type(payload).__name__},
            )
        return cls([decode_handler(item) for item in payload])

    def __iter__(self) -> Iterator[Handler]:
        return iter(self.handlers)

    def __len__(self) -> int:
        return len(self.handlers)

    def tags(self) -> list[str]:
        return [h.tag for h in self.handlers]

    def of_type(self, kind: type) -> list:
        return [h for h in self.handlers if isinstance(h, kind)]

    def events(self, name: str | None = None) -> list[EventRaised]:
        return [
            h for h in self.handlers
            if isinstance(h, EventRaised) and (name is None or h.event_name == name)
        ]

    def require_event(self, name: str) -> EventRaised:
        """
        Return the first event with the given name.

        Raises:
            ParseError: Naming the event and listing the tags actually present
        """
        for event in self.events(name):
            return event
        present = self.tags()
        raise errors.ParseError(
            f"Required event {name} not found in response (present: {', '.join(present) or 'none'})",
            present_tags=present,
            context={"event": name},
        )

    def callback(self) -> CallbackCompleted | None:
        found = self.of_type(CallbackCompleted)
        return found[0] if found else None

    def state_changes(self, form_id: str | None = None) -> list[StateChanged]:
        return [
            h for h in self.of_type(StateChanged)
            if form_id is None or h.form_id == form_id
        ]

    def server_messages(self, *kinds: str) -> list[ServerMessage]:
        return [h for h in self.of_type(ServerMessage) if not kinds or h.kind in kinds]

    def session_init(self) -> SessionInit | None:
        found = self.of_type(SessionInit)
        return found[0] if found else None

    @property
    def stack_emptied(self) -> bool:
        return bool(self.of_type(StackEmptied))

    def shown_form_ids(self) -> list[str]:
        """Form ids opened by FormToShow or DialogToShow events, in order."""
        ids = []
        for event in self.handlers:
            if isinstance(event, EventRaised) and event.event_name in FORM_EVENTS and event.form_id:
                ids.append(event.form_id)
        return ids
