"""
Pages API - Load, mutate, and release logical pages.
"""

from typing import Any
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ...core import errors
from ...core.models import MutationResult, PageDescriptor, TrackedForm
from ...core.result import Result


router = APIRouter()


ERROR_STATUS: dict[type, int] = {
    errors.ValidationError: 400,
    errors.AuthenticationError: 401,
    errors.BusinessLogicError: 422,
    errors.ParseError: 502,
    errors.ProtocolError: 502,
    errors.ConnectionError: 503,
}


class SetFieldRequest(BaseModel):
    """Request to write a field value."""
    control_path: str = Field(..., description="Control path of the field, e.g. server:c[1]/c[0]")
    value: Any = Field(..., description="New value as a user would enter it")
    form_id: str | None = Field(default=None, description="Sub-form id; defaults to the page's shell form")
    control_name: str | None = Field(default=None, description="Field name reported in telemetry")


class InvokeActionRequest(BaseModel):
    """Request to invoke an action."""
    control_path: str = Field(..., description="Control path of the action")
    system_action: int | None = Field(default=None, description="Numeric system action code")
    action_name: str | None = Field(default=None, description="Action name, used when no code is given")
    form_id: str | None = Field(default=None)
    key: str | None = Field(default=None, description="Row bookmark for list-scoped actions")


def unwrap_or_raise(result: Result) -> Any:
    """Map an Err to an HTTPException carrying the error dict."""
    if result.is_ok:
        return result.unwrap()

    error = result.unwrap_err()
    status = 500
    for kind in type(error).__mro__:
        if kind in ERROR_STATUS:
            status = ERROR_STATUS[kind]
            break
    raise HTTPException(status_code=status, detail=error.to_dict())


@router.get("/", response_model=list[TrackedForm])
async def list_pages(req: Request) -> list[TrackedForm]:
    """List pages currently open across the pool."""
    pool = req.app.state.pool
    return [t for t in (pool.tracked_form(p) for p in pool.pages) if t is not None]


@router.get("/{page_id}", response_model=PageDescriptor)
async def load_page(page_id: str, req: Request) -> PageDescriptor:
    """
    Open a page and return its descriptor.

    Args:
        page_id: Logical page id
        req: FastAPI request (for app state)

    Returns:
        Fields, actions, and permissions of the page
    """
    return unwrap_or_raise(await req.app.state.pool.load_page(page_id))


@router.post("/{page_id}/fields", response_model=MutationResult)
async def set_field(page_id: str, request: SetFieldRequest, req: Request) -> MutationResult:
    """Write a field on an open page."""
    result = await req.app.state.pool.set_field(
        page_id,
        request.control_path,
        request.value,
        form_id=request.form_id,
        control_name=request.control_name,
    )
    return unwrap_or_raise(result)


@router.post("/{page_id}/actions", response_model=MutationResult)
async def invoke_action(page_id: str, request: InvokeActionRequest, req: Request) -> MutationResult:
    """Invoke an action on an open page."""
    action = request.system_action if request.system_action is not None else request.action_name
    if action is None:
        raise HTTPException(status_code=400, detail="Either system_action or action_name is required")

    result = await req.app.state.pool.invoke_action(
        page_id,
        request.control_path,
        action,
        form_id=request.form_id,
        key=request.key,
    )
    return unwrap_or_raise(result)


@router.delete("/{page_id}", response_model=TrackedForm)
async def release_page(page_id: str, req: Request) -> TrackedForm:
    """Close an open page and free its session."""
    return unwrap_or_raise(await req.app.state.pool.release_page(page_id))
