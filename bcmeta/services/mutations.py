"""
Mutation Primitives.
Field writes and action invocations against forms tracked by a page loader.
"""

from typing import Any

from ..core import errors
from ..core.log import Loggable
from ..core.models import Interaction, MutationResult
from ..core.result import Err, Ok, Result
from ..protocol import interactions
from ..protocol.handlers import HandlerSet
from .page_loader import PageLoader, raise_server_rejection


class MutationPrimitives(Loggable):
    """
    Builds canonical mutation interactions and sends them through the
    loader's session. Only forms the loader currently tracks may be
    targeted; anything else fails before any interaction is sent.
    """

    name = "Mutations"

    def __init__(self, loader: PageLoader):
        self.loader = loader

    @property
    def session(self):
        return self.loader.session

    def _require_tracked(self, form_id: str, control_path: str) -> None:
        if not form_id or not self.loader.is_tracked_form(form_id):
            raise errors.ValidationError(
                f"Form {form_id or '<empty>'} is not a tracked form of this session",
                context={"form_id": form_id},
            )
        if not control_path or not control_path.startswith("server"):
            raise errors.ValidationError(
                f"Invalid control path {control_path!r}",
                context={"form_id": form_id, "control_path": control_path},
            )

    async def _send(self, form_id: str, interaction: Interaction) -> MutationResult:
        response: HandlerSet = await self.session.invoke(interaction)
        raise_server_rejection(response, self.loader.page_for_form(form_id))

        completion = response.callback()
        return MutationResult(
            form_id=form_id,
            interaction=interaction.name,
            callback_id=str(self.session.last_callback_id),
            completed=bool(completion and completion.completions),
            changed_form_ids=sorted({c.form_id for c in response.state_changes()}),
            opened_form_ids=response.shown_form_ids(),
        )

    async def set_field_value(
        self,
        form_id: str,
        control_path: str,
        new_value: Any,
        control_name: str | None = None,
    ) -> Result[MutationResult]:
        """
        Write a field value with immediate commit.

        Args:
            form_id: Tracked form owning the field
            control_path: Path of the field control
            new_value: Value as the user would type it
            control_name: Name reported in telemetry (defaults to the path)

        Returns:
            Ok(MutationResult), or Err(ValidationError) for an untracked form
            without sending anything
        """
        try:
            self._require_tracked(form_id, control_path)
            interaction = interactions.save_value(form_id, control_path, new_value, control_name)
            result = await self._send(form_id, interaction)
        except errors.BCMetaError as e:
            self.log(f"SaveValue on {form_id} failed: {e.code}")
            return Err(e)
        return Ok(result)

    async def invoke_action(
        self,
        form_id: str,
        control_path: str,
        action: int | str,
        key: str | None = None,
    ) -> Result[MutationResult]:
        """
        Invoke an action by system action code, or by name.

        Args:
            form_id: Tracked form hosting the action
            control_path: Path of the action control
            action: Numeric system action code (preferred) or action name
            key: Opaque row bookmark for list-scoped actions
        """
        try:
            self._require_tracked(form_id, control_path)
            if isinstance(action, str) and not action.strip():
                raise errors.ValidationError("Action name must not be empty", context={"form_id": form_id})
            interaction = interactions.invoke_action(form_id, control_path, action, key)
            result = await self._send(form_id, interaction)
        except errors.BCMetaError as e:
            self.log(f"InvokeAction on {form_id} failed: {e.code}")
            return Err(e)
        return Ok(result)
