from fastapi import APIRouter, Depends, HTTPException, Query, status

from bandi.api.errors import http_error
from bandi.core.auth import Principal, Role
from bandi.core.security import get_principal, require_roles
from bandi.schemas.notices import Comment, CommentIn, Notice, NoticeOut, NoticeState
from bandi.services.notices import get_notice_coordinator
from bandi.services.repository import RepositoryError

router = APIRouter()

NOTICE_EDITORS = (Role.TEACHING_OFFICE, Role.PROFESSOR)


@router.post("", response_model=Notice)
async def create_notice(
    payload: Notice,
    principal: Principal = Depends(require_roles(*NOTICE_EDITORS)),
    coordinator=Depends(get_notice_coordinator),
) -> Notice:
    try:
        return await coordinator.create(payload)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.put("/{protocol}", response_model=Notice)
async def update_notice(
    protocol: str,
    payload: Notice,
    principal: Principal = Depends(require_roles(*NOTICE_EDITORS)),
    coordinator=Depends(get_notice_coordinator),
) -> Notice:
    if payload.protocol != protocol:
        raise HTTPException(
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            detail="notice protocol does not match the request path",
        )

    try:
        return await coordinator.update(payload)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.delete("/{protocol}")
async def delete_notice(
    protocol: str,
    principal: Principal = Depends(require_roles(Role.TEACHING_OFFICE)),
    coordinator=Depends(get_notice_coordinator),
) -> dict[str, bool]:
    try:
        removed = await coordinator.remove(protocol)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return {"removed": removed}


@router.get("", response_model=list[NoticeOut])
async def list_notices(
    principal: Principal = Depends(get_principal),
    coordinator=Depends(get_notice_coordinator),
    state: NoticeState | None = Query(default=None),
    referent: str | None = Query(default=None),
) -> list[NoticeOut]:
    try:
        if state is not None:
            return await coordinator.find_by_state(state.value)
        if referent is not None:
            return await coordinator.find_by_referent(referent)
        return await coordinator.find_all()
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.get("/{protocol}", response_model=NoticeOut)
async def get_notice(
    protocol: str,
    principal: Principal = Depends(get_principal),
    coordinator=Depends(get_notice_coordinator),
) -> NoticeOut:
    try:
        return await coordinator.find_by_protocol(protocol)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.put("/{protocol}/comment", response_model=Comment)
async def set_notice_comment(
    protocol: str,
    payload: CommentIn,
    principal: Principal = Depends(require_roles(Role.DDI, Role.TEACHING_OFFICE)),
    coordinator=Depends(get_notice_coordinator),
) -> Comment:
    try:
        return await coordinator.set_comment(protocol, Comment(author=principal.id, text=payload.text))
    except RepositoryError as exc:
        raise http_error(exc) from exc
