"""
Pydantic models for the page metadata client.
Defines session artifacts, interaction requests, and the agent-facing page descriptor.
"""

import json
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any
from pydantic import BaseModel, ConfigDict, Field
from uuid import uuid4

from .config import settings


# ==============================================================================
# Enumerations
# ==============================================================================

class FieldType(str, Enum):
    """Semantic type of a data control."""
    TEXT = "text"
    DECIMAL = "decimal"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    PERCENTAGE = "percentage"
    OPTION = "option"
    MULTI_OPTION = "multi_option"


class PageType(str, Enum):
    """Page type inferred from the caption."""
    CARD = "Card"
    LIST = "List"
    DOCUMENT = "Document"
    WORKSHEET = "Worksheet"
    REPORT = "Report"


class SystemAction(IntEnum):
    """Numeric codes of the built-in record actions."""
    NEW = 10
    DELETE = 20
    EDIT = 40
    VIEW = 60


# ==============================================================================
# Session Models
# ==============================================================================

class Credentials(BaseModel):
    """Login credentials for one tenant."""
    base_url: str
    username: str
    password: str = Field(repr=False)
    tenant_id: str = "default"
    company: str | None = None

    @classmethod
    def from_settings(cls) -> "Credentials":
        """Build credentials from the global settings."""
        return cls(
            base_url=settings.base_url,
            username=settings.username,
            password=settings.password,
            tenant_id=settings.tenant_id,
            company=settings.company,
        )


class SessionArtifacts(BaseModel):
    """Authentication artifacts produced by a successful login."""
    base_url: str
    cookies: dict[str, str] = Field(default_factory=dict)
    csrf_token: str = Field(default="", repr=False)

    def cookie_header(self) -> str:
        """Render the cookie jar as a single Cookie header value."""
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


class SessionInfo(BaseModel):
    """Server-assigned session identifiers."""
    server_session_id: str
    session_key: str = Field(repr=False)
    company_name: str | None = None


class ClientDescriptor(BaseModel):
    """Identity of this client instance as reported at session open."""
    spa_instance_id: str = Field(default_factory=lambda: uuid4().hex[:8])
    telemetry_session_id: str = Field(default_factory=lambda: str(uuid4()))
    application_id: str = "FIN"
    device_category: int = 0
    time_zone_offset_minutes: int = Field(default_factory=lambda: settings.time_zone_offset_minutes)
    features: list[str] = Field(default_factory=lambda: [
        "QueueInteractions",
        "MetadataCache",
        "CacheSession",
        "DynamicsQuickEntry",
        "Multitasking",
        "MultilineEdit",
        "SaveValueToDatabasePromptly",
        "CalcOnlyVisibleFlowFields",
    ])
    extensions: list[str] = Field(default_factory=lambda: [
        "Microsoft.Dynamics.Nav.Client.PageNotifier",
        "Microsoft.Dynamics.Nav.Client.Tour",
        "Microsoft.Dynamics.Nav.Client.UserTours",
        "Microsoft.Dynamics.Nav.Client.AppSource",
        "Microsoft.Dynamics.Nav.Client.Designer",
    ])

    def navigation_context(self) -> dict[str, Any]:
        return {
            "applicationId": self.application_id,
            "deviceCategory": self.device_category,
            "spaInstanceId": self.spa_instance_id,
        }

    def supported_extensions(self) -> str:
        """Extensions are sent as a pre-serialized JSON string."""
        return json.dumps([{"Name": name} for name in self.extensions])


class SessionContext(BaseModel):
    """Initial context returned by opening a session."""
    session: SessionInfo
    role_center_form_id: str | None = None


# ==============================================================================
# Interaction Models
# ==============================================================================

class Interaction(BaseModel):
    """
    A named operation sent through the session.

    The callback id is assigned by the transport when the interaction is
    sent; the sent copy is frozen like every other interaction.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    named_parameters: dict[str, Any] | str = Field(default_factory=dict)
    form_id: str | None = None
    control_path: str | None = None
    system_action: int | None = None
    callback_id: str | None = None

    def with_callback(self, callback_id: str) -> "Interaction":
        """Return the sent copy carrying its callback id."""
        return self.model_copy(update={"callback_id": callback_id})

    def to_wire(self) -> dict[str, Any]:
        """
        Render the interaction as it appears inside interactionsToInvoke.

        Returns:
            Wire dict with named parameters always serialized to a string
        """
        if self.callback_id is None:
            raise ValueError(f"Interaction {self.name} has no callback id")

        params = self.named_parameters
        if not isinstance(params, str):
            params = json.dumps(params)

        wire: dict[str, Any] = {
            "interactionName": self.name,
            "skipExtendingSessionLifetime": False,
            "namedParameters": params,
            "callbackId": self.callback_id,
        }
        if self.control_path is not None:
            wire["controlPath"] = self.control_path
        if self.form_id is not None:
            wire["formId"] = self.form_id
        if self.system_action is not None:
            wire["systemAction"] = self.system_action
        return wire


# ==============================================================================
# Page Descriptor
# ==============================================================================

class FieldDescriptor(BaseModel):
    """A user-visible data control."""
    name: str
    caption: str
    type: FieldType
    editable: bool = True
    required: bool = False
    options: list[str] | None = None
    form_id: str
    control_path: str


class ActionDescriptor(BaseModel):
    """An invocable command, enabled or not."""
    name: str
    caption: str
    enabled: bool = True
    system_action: int | None = None
    form_id: str
    control_path: str


class PagePermissions(BaseModel):
    """Record-level permissions for a page."""
    insert_allowed: bool = False
    modify_allowed: bool = False
    delete_allowed: bool = False
    read_only: bool = True


class PageDescriptor(BaseModel):
    """Aggregated, agent-facing description of one logical page."""
    page_id: str
    caption: str
    page_type: PageType = PageType.CARD
    form_id: str
    fields: list[FieldDescriptor] = Field(default_factory=list)
    actions: list[ActionDescriptor] = Field(default_factory=list)
    permissions: PagePermissions = Field(default_factory=PagePermissions)
    sub_form_ids: list[str] = Field(default_factory=list)


class TrackedForm(BaseModel):
    """Binding of a logical page to its server form for the session's lifetime."""
    page_id: str
    form_id: str
    caption: str = ""
    sub_form_ids: list[str] = Field(default_factory=list)
    opened_at: datetime = Field(default_factory=datetime.now)


class MutationResult(BaseModel):
    """Outcome of a field write or action invocation."""
    form_id: str
    interaction: str
    callback_id: str | None = None
    completed: bool = False
    changed_form_ids: list[str] = Field(default_factory=list)
    opened_form_ids: list[str] = Field(default_factory=list)
