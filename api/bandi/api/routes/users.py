from fastapi import APIRouter, Depends, HTTPException, status

from bandi.api.errors import http_error
from bandi.core.auth import Principal, Role
from bandi.core.security import get_principal, require_roles
from bandi.schemas.users import Student, User, UserFilter
from bandi.services.repository import RepositoryError
from bandi.services.tables import get_user_repository

router = APIRouter()


@router.post("", response_model=Student | User)
async def create_user(
    payload: Student | User,
    principal: Principal = Depends(require_roles(Role.TEACHING_OFFICE)),
    users=Depends(get_user_repository),
) -> User:
    try:
        return await users.create(payload)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.put("/{email}", response_model=Student | User)
async def update_user(
    email: str,
    payload: Student | User,
    principal: Principal = Depends(require_roles(Role.TEACHING_OFFICE)),
    users=Depends(get_user_repository),
) -> User:
    if payload.email != email:
        raise HTTPException(
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            detail="user email does not match the request path",
        )

    try:
        return await users.update(payload)
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.delete("/{email}")
async def delete_user(
    email: str,
    principal: Principal = Depends(require_roles(Role.TEACHING_OFFICE)),
    users=Depends(get_user_repository),
) -> dict[str, bool]:
    try:
        removed = await users.delete(email)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return {"removed": removed}


@router.get("/{email}", response_model=Student | User)
async def get_user(
    email: str,
    principal: Principal = Depends(get_principal),
    users=Depends(get_user_repository),
) -> User:
    try:
        user = await users.find_by_email(email)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    if user is None:
        raise HTTPException(status_code=status.HTTP_412_PRECONDITION_FAILED, detail=f"user not found: {email}")
    return user


@router.get("", response_model=list[Student | User])
async def list_users(
    principal: Principal = Depends(get_principal),
    users=Depends(get_user_repository),
) -> list[User]:
    try:
        return await users.find_all()
    except RepositoryError as exc:
        raise http_error(exc) from exc


@router.post("/search", response_model=list[Student | User])
async def search_users(
    payload: UserFilter,
    principal: Principal = Depends(get_principal),
    users=Depends(get_user_repository),
) -> list[User]:
    try:
        return await users.search(payload)
    except RepositoryError as exc:
        raise http_error(exc) from exc
