from fastapi import APIRouter, Depends, HTTPException, Query, status

from bandi.api.errors import http_error
from bandi.core.auth import Principal, Role
from bandi.core.security import get_principal, require_roles
from bandi.schemas.ratings import Rating, RatingIn
from bandi.services.repository import RepositoryError
from bandi.services.tables import get_rating_repository

router = APIRouter()


@router.post("", response_model=Rating)
async def create_rating(
    payload: RatingIn,
    principal: Principal = Depends(require_roles(Role.PROFESSOR)),
    ratings=Depends(get_rating_repository),
) -> Rating:
    try:
        return await ratings.create(payload)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.put("", response_model=Rating)
async def update_rating(
    payload: RatingIn,
    principal: Principal = Depends(require_roles(Role.PROFESSOR)),
    ratings=Depends(get_rating_repository),
) -> Rating:
    try:
        return await ratings.update(payload)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.delete("/{assignment_id}/{student}")
async def delete_rating(
    assignment_id: int,
    student: str,
    principal: Principal = Depends(require_roles(Role.PROFESSOR)),
    ratings=Depends(get_rating_repository),
) -> dict[str, bool]:
    try:
        removed = await ratings.remove(student, assignment_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return {"removed": removed}


@router.get("/{assignment_id}/{student}", response_model=Rating)
async def get_rating(
    assignment_id: int,
    student: str,
    principal: Principal = Depends(get_principal),
    ratings=Depends(get_rating_repository),
) -> Rating:
    try:
        return await ratings.find_by_id(student, assignment_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.get("", response_model=list[Rating])
async def list_ratings(
    principal: Principal = Depends(get_principal),
    ratings=Depends(get_rating_repository),
    student: str | None = Query(default=None),
    assignment_id: int | None = Query(default=None, ge=1),
    notice_protocol: str | None = Query(default=None),
) -> list[Rating]:
    try:
        if student is not None:
            return await ratings.find_by_student(student)
        if assignment_id is not None:
            return await ratings.find_by_assignment(assignment_id)
        if notice_protocol is not None:
            return await ratings.find_by_protocol(notice_protocol)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    raise HTTPException(
        status_code=status.HTTP_412_PRECONDITION_FAILED,
        detail="one of student, assignment_id or notice_protocol is required",
    )
