"""
Form Tree Extractor.
Builds an owned control tree from a form payload and enumerates nested sub-forms.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterator

from ..core import errors
from .handlers import EventRaised, HandlerSet, StateChanged


# Child collections, in the order the client walks them, with the path step prefix.
CHILD_COLLECTIONS = (
    ("HeaderActions", "ha"),
    ("Actions", "a"),
    ("Children", "c"),
)

ROOT_PATH = "server:"

_STEP_RE = re.compile(r"^(ha|a|c)\[(\d+)\]$")


# ==============================================================================
# Control Nodes
# ==============================================================================

@dataclass
class ControlNode:
    """
    One node of a form's control tree.

    A node exclusively owns its children. Properties hold every scalar and
    nested value except the three child collections.
    """
    control_type: str
    properties: dict[str, Any] = field(default_factory=dict)
    header_actions: list["ControlNode"] = field(default_factory=list)
    actions: list["ControlNode"] = field(default_factory=list)
    children: list["ControlNode"] = field(default_factory=list)

    @property
    def server_id(self) -> str | None:
        value = self.properties.get("ServerId")
        return str(value) if value is not None else None

    @property
    def caption(self) -> str:
        return str(self.properties.get("Caption") or "")

    @property
    def visible(self) -> bool:
        return self.properties.get("Visible") is not False

    @property
    def has_delayed_controls(self) -> bool:
        return "DelayedControls" in self.properties

    @property
    def has_expression_properties(self) -> bool:
        return "ExpressionProperties" in self.properties

    @property
    def is_form(self) -> bool:
        return self.server_id is not None

    def collection(self, key: str) -> list["ControlNode"]:
        return {"HeaderActions": self.header_actions, "Actions": self.actions, "Children": self.children}[key]

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "ControlNode":
        """
        Build an owned tree from a raw payload, iteratively.

        Raises:
            ParseError: If a child collection is not a list of objects
        """
        root = cls._shallow(raw)
        stack: list[tuple[dict[str, Any], ControlNode]] = [(raw, root)]
        while stack:
            source, node = stack.pop()
            for key, _ in CHILD_COLLECTIONS:
                items = source.get(key)
                if items is None:
                    continue
                if not isinstance(items, list):
                    raise errors.ParseError(
                        f"{key} of control {node.control_type or '?'} is not a list",
                        context={"server_id": node.server_id},
                    )
                target = node.collection(key)
                for item in items:
                    if not isinstance(item, dict):
                        raise errors.ParseError(
                            f"{key} entry is not an object",
                            context={"server_id": node.server_id},
                        )
                    child = cls._shallow(item)
                    target.append(child)
                    stack.append((item, child))
        return root

    @classmethod
    def _shallow(cls, raw: dict[str, Any]) -> "ControlNode":
        skip = {key for key, _ in CHILD_COLLECTIONS}
        properties = {k: v for k, v in raw.items() if k not in skip}
        return cls(control_type=str(raw.get("t") or ""), properties=properties)

    def walk(
        self,
        skip_form_ids: frozenset[str] = frozenset(),
        include_hidden: bool = True,
    ) -> Iterator["ControlVisit"]:
        """
        Pre-order walk of this form and the forms nested in it.

        Header actions are visited before actions, actions before children,
        each in list order. A nested form restarts the control path at the
        server root and owns the controls below it. Nested forms whose ids
        are in skip_form_ids are not entered. With include_hidden false, nodes
        explicitly marked invisible are skipped along with their subtrees.
        """
        stack: list[ControlVisit] = [ControlVisit(self.server_id or "", ROOT_PATH, self)]
        while stack:
            visit = stack.pop()
            yield visit
            pending = []
            for key, prefix in CHILD_COLLECTIONS:
                for index, child in enumerate(visit.node.collection(key)):
                    if not include_hidden and not child.visible:
                        continue
                    if child.is_form:
                        if child.server_id in skip_form_ids:
                            continue
                        pending.append(ControlVisit(child.server_id, ROOT_PATH, child))
                    else:
                        step = f"{prefix}[{index}]"
                        pending.append(ControlVisit(visit.form_id, join_path(visit.path, step), child))
            stack.extend(reversed(pending))

    def resolve(self, path: str) -> "ControlNode | None":
        """Find the node at a control path relative to this form."""
        if path in ("server", ROOT_PATH):
            return self
        if not path.startswith(ROOT_PATH):
            return None

        node: ControlNode | None = self
        for step in path[len(ROOT_PATH):].split("/"):
            match = _STEP_RE.match(step)
            if match is None or node is None:
                return None
            prefix, index = match.group(1), int(match.group(2))
            key = {"ha": "HeaderActions", "a": "Actions", "c": "Children"}[prefix]
            items = node.collection(key)
            node = items[index] if index < len(items) else None
        return node


@dataclass(frozen=True)
class ControlVisit:
    """A node reached by a walk, with its owning form and path within that form."""
    form_id: str
    path: str
    node: ControlNode


def join_path(parent: str, step: str) -> str:
    """Append a step: ':' follows the server root, '/' separates the rest."""
    if parent.endswith(":"):
        return parent + step
    return f"{parent}/{step}"


# ==============================================================================
# Property Changes
# ==============================================================================

PROPERTY_CHANGE_TYPES = {"lcpch", "prch", "PropertyChange"}
PROPERTY_BATCH_TYPES = {"lcpchs", "prc", "PropertyChanges"}


def _change_path(change: dict[str, Any]) -> str | None:
    reference = change.get("ControlReference") or change.get("controlReference") or {}
    if not isinstance(reference, dict):
        return None
    path = reference.get("controlPath") or reference.get("ControlPath")
    return path if isinstance(path, str) else None


def apply_property_changes(form: ControlNode, changes: list[StateChanged]) -> int:
    """
    Apply property changes addressed to controls of this form.

    Other change kinds (row data, structure) do not affect metadata and
    are ignored.

    Returns:
        Number of properties updated
    """
    applied = 0
    for handler in changes:
        for change in handler.changes:
            kind = change.get("t")
            if kind in PROPERTY_BATCH_TYPES:
                entries = change.get("Changes") or []
            elif kind in PROPERTY_CHANGE_TYPES:
                entries = [change]
            else:
                continue

            path = _change_path(change)
            target = form.resolve(path) if path else None
            if target is None:
                continue

            for entry in entries:
                if isinstance(entry, dict) and isinstance(entry.get("PropertyName"), str):
                    target.properties[entry["PropertyName"]] = entry.get("PropertyValue")
                    applied += 1
    return applied


# ==============================================================================
# Extraction
# ==============================================================================

@dataclass
class SubForm:
    """A nested form discovered one level below a shell container."""
    server_id: str
    container: ControlNode
    form: ControlNode


@dataclass
class FormTree:
    """A shell form and the sub-forms embedded in its containers."""
    shell_id: str
    shell: ControlNode
    sub_forms: list[SubForm] = field(default_factory=list)


def is_form_root(payload: Any) -> bool:
    """A hierarchy root has both a server id and a children collection."""
    return isinstance(payload, dict) and "ServerId" in payload and "Children" in payload


def find_form_payload(response: HandlerSet, form_id: str | None = None) -> dict[str, Any] | None:
    """
    Locate the form-hierarchy root among a response's events.

    Args:
        response: Decoded handlers
        form_id: Only accept a root with this server id

    Returns:
        The raw root payload, or None
    """
    for handler in response:
        if not isinstance(handler, EventRaised) or not is_form_root(handler.payload):
            continue
        if form_id is None or str(handler.payload["ServerId"]) == form_id:
            return handler.payload
    return None


def extract_form_tree(payload: dict[str, Any]) -> FormTree:
    """
    Enumerate the shell and the form found in each container's first child slot.

    Only the slot directly below each top-level container is examined;
    containers without a nested form are plain layout.

    Raises:
        ParseError: If the payload is not a hierarchy root
    """
    if not is_form_root(payload):
        raise errors.ParseError(
            "Form payload has no ServerId/Children",
            context={"keys": sorted(payload)[:20] if isinstance(payload, dict) else []},
        )

    shell = ControlNode.from_raw(payload)
    tree = FormTree(shell_id=str(shell.server_id), shell=shell)

    for container in shell.children:
        if not container.children:
            continue
        candidate = container.children[0]
        if candidate.server_id is not None:
            tree.sub_forms.append(SubForm(
                server_id=candidate.server_id,
                container=container,
                form=candidate,
            ))
    return tree
