"""Core module - configuration, errors, results, and models."""

from .config import settings, Settings
from .result import Ok, Err, Result
from .models import (
    FieldType,
    PageType,
    SystemAction,
    Credentials,
    SessionArtifacts,
    SessionInfo,
    SessionContext,
    ClientDescriptor,
    Interaction,
    FieldDescriptor,
    ActionDescriptor,
    PagePermissions,
    PageDescriptor,
    TrackedForm,
    MutationResult,
)
from . import errors

__all__ = [
    "settings",
    "Settings",
    "Ok",
    "Err",
    "Result",
    "FieldType",
    "PageType",
    "SystemAction",
    "Credentials",
    "SessionArtifacts",
    "SessionInfo",
    "SessionContext",
    "ClientDescriptor",
    "Interaction",
    "FieldDescriptor",
    "ActionDescriptor",
    "PagePermissions",
    "PageDescriptor",
    "TrackedForm",
    "MutationResult",
    "errors",
]
