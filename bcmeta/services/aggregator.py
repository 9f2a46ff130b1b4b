"""
Metadata Aggregator.
Merges the shell and loaded sub-forms into one ordered page descriptor.
"""

import re
from typing import Any

from ..core.log import Loggable
from ..core.models import (
    ActionDescriptor,
    FieldDescriptor,
    FieldType,
    PageDescriptor,
    PagePermissions,
    PageType,
    SystemAction,
)
from ..protocol.form_tree import ControlNode, ControlVisit


# ==============================================================================
# Control Vocabulary
# ==============================================================================

FIELD_TYPES: dict[str, FieldType] = {
    "sc": FieldType.TEXT,
    "dc": FieldType.DECIMAL,
    "i32c": FieldType.INTEGER,
    "i64c": FieldType.INTEGER,
    "bc": FieldType.BOOLEAN,
    "dtc": FieldType.DATETIME,
    "pc": FieldType.PERCENTAGE,
    "sec": FieldType.OPTION,
}

ACTION_TYPES = {"ac", "arc", "fla"}

# Layout containers: walked for their children, never emitted
LAYOUT_TYPES = {"fhc", "stackc", "stackgc", "gc", "ssc"}

SYSTEM_FIELD_PATTERNS = [
    re.compile(r"^systemid$", re.IGNORECASE),
    re.compile(r"^systemcreatedat$", re.IGNORECASE),
    re.compile(r"^systemcreatedby$", re.IGNORECASE),
    re.compile(r"^systemmodifiedat$", re.IGNORECASE),
    re.compile(r"^systemmodifiedby$", re.IGNORECASE),
    re.compile(r"^timestamp$", re.IGNORECASE),
    re.compile(r"^last date modified$", re.IGNORECASE),
    re.compile(r"^last modified date time$", re.IGNORECASE),
    re.compile(r"^id$", re.IGNORECASE),
    re.compile(r"^systemrowversion$", re.IGNORECASE),
]

_PAGE_ID_RE = re.compile(r"^(\d+)")


def is_system_field(name: str) -> bool:
    """Record identity, audit timestamps, and row version are not user fields."""
    return any(p.search(name.strip()) for p in SYSTEM_FIELD_PATTERNS)


def infer_page_type(caption: str) -> PageType:
    lowered = caption.lower()
    if "list" in lowered:
        return PageType.LIST
    if "document" in lowered:
        return PageType.DOCUMENT
    if "worksheet" in lowered or "journal" in lowered:
        return PageType.WORKSHEET
    if "report" in lowered:
        return PageType.REPORT
    return PageType.CARD


def page_id_from_form(form: ControlNode, fallback: str) -> str:
    """The numeric prefix of CacheKey is the page id."""
    cache_key = form.properties.get("CacheKey")
    if isinstance(cache_key, str):
        match = _PAGE_ID_RE.match(cache_key)
        if match:
            return match.group(1)
    return fallback


def option_values(properties: dict[str, Any]) -> list[str] | None:
    options = properties.get("Options")
    if isinstance(options, list):
        return [str(o) for o in options]
    items = properties.get("Items")
    if isinstance(items, list):
        return [str(i.get("Caption")) for i in items if isinstance(i, dict) and i.get("Caption") is not None]
    return None


def _control_name(properties: dict[str, Any]) -> str:
    return str(properties.get("DesignName") or properties.get("Name") or properties.get("Caption") or "")


# ==============================================================================
# Aggregator
# ==============================================================================

class MetadataAggregator(Loggable):
    """
    Walks the shell and every loaded sub-form in order.

    Output ordering follows walk encounter order: shell controls first,
    then each loaded sub-form in load order. A control is emitted once per
    (form id, control path).
    """

    name = "Aggregator"

    def aggregate(
        self,
        page_id: str,
        shell: ControlNode,
        sub_forms: list[ControlNode] | None = None,
    ) -> PageDescriptor:
        """
        Build the page descriptor.

        Args:
            page_id: Requested logical page id
            shell: Shell form tree
            sub_forms: Loaded sub-form trees, in load order

        Returns:
            Aggregated descriptor
        """
        sub_forms = sub_forms or []
        loaded_ids = frozenset(f.server_id for f in sub_forms if f.server_id)

        fields: list[FieldDescriptor] = []
        actions: list[ActionDescriptor] = []
        seen: set[tuple[str, str]] = set()

        sources = [(shell, loaded_ids)] + [(form, frozenset()) for form in sub_forms]
        for root, skip in sources:
            for visit in root.walk(skip, include_hidden=False):
                key = (visit.form_id, visit.path)
                if key in seen:
                    continue
                seen.add(key)
                if visit.node.control_type in LAYOUT_TYPES:
                    continue

                field = self._field(visit)
                if field is not None:
                    fields.append(field)
                    continue
                action = self._action(visit)
                if action is not None:
                    actions.append(action)

        caption = shell.caption
        descriptor = PageDescriptor(
            page_id=page_id_from_form(shell, page_id),
            caption=caption,
            page_type=infer_page_type(caption),
            form_id=shell.server_id or "",
            fields=fields,
            actions=actions,
            permissions=self._permissions(shell, fields, actions),
            sub_form_ids=[f.server_id for f in sub_forms if f.server_id],
        )
        self.log(
            f"Page {descriptor.page_id} '{caption}': "
            f"{len(fields)} fields, {len(actions)} actions from {1 + len(sub_forms)} forms"
        )
        return descriptor

    def _field(self, visit: ControlVisit) -> FieldDescriptor | None:
        node = visit.node
        field_type = FIELD_TYPES.get(node.control_type)
        if field_type is None:
            return None

        props = node.properties
        if props.get("Visible") is False or props.get("Enabled") is False:
            return None

        name = _control_name(props)
        if not name or is_system_field(name):
            return None
        caption = str(props.get("Caption") or name)
        if is_system_field(caption):
            return None

        if field_type is FieldType.OPTION and props.get("MultiSelect"):
            field_type = FieldType.MULTI_OPTION

        options = None
        if field_type in (FieldType.OPTION, FieldType.MULTI_OPTION):
            options = option_values(props)

        return FieldDescriptor(
            name=name,
            caption=caption,
            type=field_type,
            editable=props.get("Editable") is not False,
            required=bool(props.get("ShowMandatory") or props.get("Mandatory")),
            options=options,
            form_id=visit.form_id,
            control_path=visit.path,
        )

    def _action(self, visit: ControlVisit) -> ActionDescriptor | None:
        node = visit.node
        if node.control_type not in ACTION_TYPES:
            return None

        props = node.properties
        caption = props.get("Caption")
        if not caption or props.get("Visible") is False:
            return None

        system_action = props.get("SystemAction")
        if system_action is None:
            reference = props.get("ActionReference")
            if isinstance(reference, dict):
                system_action = reference.get("TargetId")
        if not isinstance(system_action, int) or isinstance(system_action, bool):
            system_action = None

        return ActionDescriptor(
            name=_control_name(props),
            caption=str(caption),
            enabled=props.get("Enabled") is not False,
            system_action=system_action,
            form_id=visit.form_id,
            control_path=visit.path,
        )

    def _permissions(
        self,
        shell: ControlNode,
        fields: list[FieldDescriptor],
        actions: list[ActionDescriptor],
    ) -> PagePermissions:
        """Explicit form flags win; otherwise infer from system actions and editable fields."""
        props = shell.properties
        enabled_codes = {a.system_action for a in actions if a.enabled and a.system_action is not None}

        def flag(key: str, inferred: bool) -> bool:
            value = props.get(key)
            return value if isinstance(value, bool) else inferred

        insert_allowed = flag("InsertAllowed", SystemAction.NEW in enabled_codes)
        delete_allowed = flag("DeleteAllowed", SystemAction.DELETE in enabled_codes)
        modify_allowed = flag("ModifyAllowed", any(f.editable for f in fields))

        read_only = props.get("Editable") is False or not (
            insert_allowed or modify_allowed or delete_allowed
        )
        return PagePermissions(
            insert_allowed=insert_allowed,
            modify_allowed=modify_allowed,
            delete_allowed=delete_allowed,
            read_only=read_only,
        )
