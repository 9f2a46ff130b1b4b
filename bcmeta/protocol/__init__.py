"""Protocol module - decoding, handler dispatch, form trees, and interaction builders."""

from .decoder import decode_message, decompress_payload, compress_payload, find_compressed
from .handlers import (
    Handler,
    HandlerSet,
    EventRaised,
    CallbackCompleted,
    StateChanged,
    StackEmptied,
    SessionInit,
    ServerMessage,
    UnknownHandler,
    decode_handler,
)
from .form_tree import ControlNode, FormTree, SubForm, extract_form_tree, find_form_payload
from .eligibility import LoadEligibilityPolicy, DelayedControlsPolicy, eligible_sub_forms
from .interactions import OpenFormStrategy, DirectOpenStrategy, NavigateStrategy

__all__ = [
    "decode_message",
    "decompress_payload",
    "compress_payload",
    "find_compressed",
    "Handler",
    "HandlerSet",
    "EventRaised",
    "CallbackCompleted",
    "StateChanged",
    "StackEmptied",
    "SessionInit",
    "ServerMessage",
    "UnknownHandler",
    "decode_handler",
    "ControlNode",
    "FormTree",
    "SubForm",
    "extract_form_tree",
    "find_form_payload",
    "LoadEligibilityPolicy",
    "DelayedControlsPolicy",
    "eligible_sub_forms",
    "OpenFormStrategy",
    "DirectOpenStrategy",
    "NavigateStrategy",
]
