from fastapi import APIRouter, Depends, HTTPException, Query, status

from bandi.api.errors import http_error
from bandi.core.auth import Principal, Role
from bandi.core.security import ACCESS_DENIED, get_principal, require_roles
from bandi.schemas.assignments import Assignment, AssignmentFilter, AssignmentState, CloseIn, SendRequestIn
from bandi.services.lifecycle import AssignmentLifecycle, get_assignment_lifecycle
from bandi.services.repository import RepositoryError

router = APIRouter()


async def _require_owner(lifecycle: AssignmentLifecycle, assignment_id: int, principal: Principal) -> None:
    try:
        assignment = await lifecycle.find(assignment_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    if assignment.student != principal.id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=ACCESS_DENIED)


@router.get("", response_model=list[Assignment])
async def search_assignments(
    principal: Principal = Depends(get_principal),
    lifecycle=Depends(get_assignment_lifecycle),
    code: str | None = Query(default=None),
    notice_protocol: str | None = Query(default=None),
    state: AssignmentState | None = Query(default=None),
    student: str | None = Query(default=None),
) -> list[Assignment]:
    assignment_filter = AssignmentFilter(code=code, notice_protocol=notice_protocol, state=state, student=student)
    try:
        return await lifecycle.search(assignment_filter)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.get("/{assignment_id}", response_model=Assignment)
async def get_assignment(
    assignment_id: int,
    principal: Principal = Depends(get_principal),
    lifecycle=Depends(get_assignment_lifecycle),
) -> Assignment:
    try:
        return await lifecycle.find(assignment_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.post("/{assignment_id}/request", response_model=Assignment)
async def send_request(
    assignment_id: int,
    payload: SendRequestIn,
    principal: Principal = Depends(require_roles(Role.TEACHING_OFFICE)),
    lifecycle=Depends(get_assignment_lifecycle),
) -> Assignment:
    try:
        return await lifecycle.send_request(assignment_id, payload.student)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.post("/{assignment_id}/book", response_model=Assignment)
async def book_assignment(
    assignment_id: int,
    principal: Principal = Depends(require_roles(Role.STUDENT)),
    lifecycle=Depends(get_assignment_lifecycle),
) -> Assignment:
    await _require_owner(lifecycle, assignment_id, principal)
    try:
        return await lifecycle.book(assignment_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.post("/{assignment_id}/assign", response_model=Assignment)
async def assign_assignment(
    assignment_id: int,
    principal: Principal = Depends(require_roles(Role.TEACHING_OFFICE)),
    lifecycle=Depends(get_assignment_lifecycle),
) -> Assignment:
    try:
        return await lifecycle.assign(assignment_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.post("/{assignment_id}/decline", response_model=Assignment)
async def decline_assignment(
    assignment_id: int,
    principal: Principal = Depends(require_roles(Role.STUDENT)),
    lifecycle=Depends(get_assignment_lifecycle),
) -> Assignment:
    await _require_owner(lifecycle, assignment_id, principal)
    try:
        return await lifecycle.decline(assignment_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.post("/{assignment_id}/close", response_model=Assignment)
async def close_assignment(
    assignment_id: int,
    payload: CloseIn,
    principal: Principal = Depends(require_roles(Role.TEACHING_OFFICE, Role.PROFESSOR)),
    lifecycle=Depends(get_assignment_lifecycle),
) -> Assignment:
    try:
        return await lifecycle.close(assignment_id, payload.note)
    except RepositoryError as exc:
        raise http_error(exc) from exc
