from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from bandi.schemas.assignments import Assignment, AssignmentFilter, AssignmentState
from bandi.schemas.candidatures import Candidature, Document
from bandi.schemas.notices import ApplicationSheet, Article, Comment, EvaluationCriterion, coerce_notice_state
from bandi.schemas.ratings import Rating, RatingIn
from bandi.schemas.users import Student, User, UserFilter
from bandi.services.reconcile import execute_actions, reconcile
from bandi.services.repository import (
    PostgresGateway,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
    get_gateway,
)

NOTICE_COLUMNS = (
    "protocol",
    "referent_professor",
    "description",
    "notice_subject",
    "admission_requirements",
    "assessable_titles",
    "how_to_submit_applications",
    "selection_board",
    "acceptance",
    "incompatibility",
    "termination_of_the_assignment",
    "nature_of_the_assignment",
    "unused_funds",
    "responsible_for_the_procedure",
    "notice_funds",
    "state",
    "type",
    "deadline",
    "notice_file",
    "graded_list_file",
)

ASSIGNMENT_COLUMNS = (
    "id",
    "notice_protocol",
    "code",
    "student",
    "title",
    "total_number_hours",
    "hourly_cost",
    "ht_fund",
    "activity_description",
    "state",
    "note",
)

STUDENT_SELECT = """
    select
      u.email,
      u.name,
      u.surname,
      u.role,
      u.verified,
      s.registration_number,
      s.birth_date
    from "user" u
    left join student s on s.user_email = u.email
"""

RATING_SELECT = """
    select
      r.assignment_id,
      r.titles_score,
      r.interview_score,
      u.email,
      u.name,
      u.surname,
      u.role,
      u.verified,
      s.registration_number,
      s.birth_date
    from rating r
    join "user" u on u.email = r.student
    join student s on s.user_email = u.email
"""


def _require(value: Any, label: str) -> None:
    if value is None:
        raise RepositoryValidationError(f"{label} must not be null")


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _build_where(filters: dict[str, Any], *, alias: str = "") -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    prefix = f"{alias}." if alias else ""
    for column, value in filters.items():
        if value is None:
            continue
        params.append(_enum_value(value))
        clauses.append(f"{prefix}{column} = ${len(params)}")
    if not clauses:
        return "", params
    return "where " + " and ".join(clauses), params


class NoticeRepository:
    """The notice row alone; child collections live in their own tables."""

    def __init__(self, gateway: PostgresGateway) -> None:
        self.gateway = gateway

    async def create(self, fields: dict[str, Any]) -> dict[str, Any]:
        _require(fields.get("protocol"), "notice protocol")
        columns = [column for column in NOTICE_COLUMNS if column in fields]
        placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
        row = await self.gateway.fetchrow(
            f"""
            insert into notice ({", ".join(columns)})
            values ({placeholders})
            returning *
            """,
            *[_enum_value(fields[column]) for column in columns],
        )
        if row is None:
            raise RepositoryConflictError("failed to create notice")
        return self._notice_row_to_dict(row)

    async def update(self, protocol: str, fields: dict[str, Any]) -> int:
        _require(protocol, "notice protocol")
        columns = [column for column in NOTICE_COLUMNS if column in fields and column != "protocol"]
        if not columns:
            return 1 if await self.exists(protocol) else 0
        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=2))
        return await self.gateway.execute(
            f"update notice set {assignments} where protocol = $1",
            protocol,
            *[_enum_value(fields[column]) for column in columns],
        )

    async def remove(self, protocol: str) -> bool:
        _require(protocol, "notice protocol")
        return await self.gateway.execute("delete from notice where protocol = $1", protocol) == 1

    async def exists(self, protocol: str) -> bool:
        _require(protocol, "notice protocol")
        row = await self.gateway.fetchrow("select 1 as found from notice where protocol = $1", protocol)
        return row is not None

    async def find_by_protocol(self, protocol: str) -> dict[str, Any] | None:
        _require(protocol, "notice protocol")
        row = await self.gateway.fetchrow("select * from notice where protocol = $1", protocol)
        return self._notice_row_to_dict(row) if row is not None else None

    async def find_by_state(self, state: str) -> list[dict[str, Any]]:
        rows = await self.gateway.fetch("select * from notice where state = $1", _enum_value(state))
        return [self._notice_row_to_dict(row) for row in rows]

    async def find_by_referent(self, referent: str) -> list[dict[str, Any]]:
        rows = await self.gateway.fetch("select * from notice where referent_professor = $1", referent)
        return [self._notice_row_to_dict(row) for row in rows]

    async def find_all(self) -> list[dict[str, Any]]:
        rows = await self.gateway.fetch("select * from notice order by protocol")
        return [self._notice_row_to_dict(row) for row in rows]

    @staticmethod
    def _notice_row_to_dict(row: dict[str, Any]) -> dict[str, Any]:
        notice = {column: row.get(column) for column in NOTICE_COLUMNS}
        # Rows written before a state rename must still load.
        notice["state"] = coerce_notice_state(notice["state"])
        return notice


class ArticleRepository:
    def __init__(self, gateway: PostgresGateway) -> None:
        self.gateway = gateway

    async def create(self, article: Article) -> Article:
        _require(article, "article")
        row = await self.gateway.fetchrow(
            """
            insert into article (notice_protocol, initial, text)
            values ($1, $2, $3)
            returning id, notice_protocol, initial, text
            """,
            article.notice_protocol,
            article.initial,
            article.text,
        )
        return Article(**row)

    async def update(self, article: Article) -> Article:
        _require(article, "article")
        row = await self.gateway.fetchrow(
            """
            update article
            set text = $3
            where notice_protocol = $1 and initial = $2
            returning id, notice_protocol, initial, text
            """,
            article.notice_protocol,
            article.initial,
            article.text,
        )
        if row is None:
            raise RepositoryNotFoundError("the article doesn't exists")
        return Article(**row)

    async def remove(self, article: Article) -> bool:
        _require(article, "article")
        removed = await self.gateway.execute(
            "delete from article where notice_protocol = $1 and initial = $2",
            article.notice_protocol,
            article.initial,
        )
        return removed > 0

    async def exists(self, article: Article) -> bool:
        _require(article, "article")
        row = await self.gateway.fetchrow(
            "select 1 as found from article where notice_protocol = $1 and initial = $2",
            article.notice_protocol,
            article.initial,
        )
        return row is not None

    async def find_by_id(self, article_id: int, notice_protocol: str) -> Article:
        _require(article_id, "article id")
        _require(notice_protocol, "notice protocol")
        row = await self.gateway.fetchrow(
            "select id, notice_protocol, initial, text from article where id = $1 and notice_protocol = $2",
            article_id,
            notice_protocol,
        )
        if row is None:
            raise RepositoryNotFoundError("article not found")
        return Article(**row)

    async def find_by_notice(self, notice_protocol: str) -> list[Article]:
        _require(notice_protocol, "notice protocol")
        rows = await self.gateway.fetch(
            "select id, notice_protocol, initial, text from article where notice_protocol = $1 order by id",
            notice_protocol,
        )
        return [Article(**row) for row in rows]

    async def find_all(self) -> list[Article]:
        rows = await self.gateway.fetch("select id, notice_protocol, initial, text from article order by id")
        return [Article(**row) for row in rows]


class EvaluationCriterionRepository:
    def __init__(self, gateway: PostgresGateway) -> None:
        self.gateway = gateway

    async def create(self, criterion: EvaluationCriterion) -> EvaluationCriterion:
        _require(criterion, "evaluation criterion")
        await self.gateway.execute(
            "insert into evaluation_criterion (notice_protocol, name, max_score) values ($1, $2, $3)",
            criterion.notice_protocol,
            criterion.name,
            criterion.max_score,
        )
        return criterion

    async def update(self, criterion: EvaluationCriterion) -> EvaluationCriterion:
        _require(criterion, "evaluation criterion")
        updated = await self.gateway.execute(
            "update evaluation_criterion set max_score = $3 where notice_protocol = $1 and name = $2",
            criterion.notice_protocol,
            criterion.name,
            criterion.max_score,
        )
        if updated == 0:
            raise RepositoryNotFoundError("the evaluation criterion doesn't exists")
        return criterion

    async def remove(self, criterion: EvaluationCriterion) -> bool:
        _require(criterion, "evaluation criterion")
        removed = await self.gateway.execute(
            "delete from evaluation_criterion where notice_protocol = $1 and name = $2",
            criterion.notice_protocol,
            criterion.name,
        )
        return removed > 0

    async def exists(self, criterion: EvaluationCriterion) -> bool:
        _require(criterion, "evaluation criterion")
        row = await self.gateway.fetchrow(
            "select 1 as found from evaluation_criterion where notice_protocol = $1 and name = $2",
            criterion.notice_protocol,
            criterion.name,
        )
        return row is not None

    async def find_by_notice(self, notice_protocol: str) -> list[EvaluationCriterion]:
        _require(notice_protocol, "notice protocol")
        rows = await self.gateway.fetch(
            "select notice_protocol, name, max_score from evaluation_criterion where notice_protocol = $1 order by name",
            notice_protocol,
        )
        return [EvaluationCriterion(**row) for row in rows]


class AssignmentRepository:
    def __init__(self, gateway: PostgresGateway) -> None:
        self.gateway = gateway

    async def create(self, assignment: Assignment) -> Assignment:
        _require(assignment, "assignment")
        row = await self.gateway.fetchrow(
            f"""
            insert into assignment (
              notice_protocol,
              code,
              student,
              title,
              total_number_hours,
              hourly_cost,
              ht_fund,
              activity_description,
              state,
              note
            )
            values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            returning {", ".join(ASSIGNMENT_COLUMNS)}
            """,
            assignment.notice_protocol,
            assignment.code,
            assignment.student,
            assignment.title,
            assignment.total_number_hours,
            assignment.hourly_cost,
            assignment.ht_fund,
            assignment.activity_description,
            assignment.state.value,
            assignment.note,
        )
        return Assignment(**row)

    async def update(self, assignment: Assignment, *, expected_state: AssignmentState | None = None) -> Assignment:
        """Overwrite an assignment row by id.

        With ``expected_state`` the write only applies while the stored state
        still matches, so two concurrent transitions cannot both succeed.
        """
        _require(assignment, "assignment")
        _require(assignment.id, "assignment id")
        params: list[Any] = [
            assignment.id,
            assignment.code,
            assignment.student,
            assignment.title,
            assignment.total_number_hours,
            assignment.hourly_cost,
            assignment.ht_fund,
            assignment.activity_description,
            assignment.state.value,
            assignment.note,
        ]
        guard = ""
        if expected_state is not None:
            params.append(expected_state.value)
            guard = f"and state = ${len(params)}"
        row = await self.gateway.fetchrow(
            f"""
            update assignment
            set
              code = $2,
              student = $3,
              title = $4,
              total_number_hours = $5,
              hourly_cost = $6,
              ht_fund = $7,
              activity_description = $8,
              state = $9,
              note = $10
            where id = $1 {guard}
            returning {", ".join(ASSIGNMENT_COLUMNS)}
            """,
            *params,
        )
        if row is None:
            if expected_state is not None and await self.find_by_id(assignment.id) is not None:
                raise RepositoryConflictError(f"assignment is no longer {expected_state.value}")
            raise RepositoryNotFoundError("assignment not found")
        return Assignment(**row)

    async def update_details(self, assignment: Assignment) -> Assignment:
        """Update the descriptive columns only, leaving lifecycle columns untouched."""
        _require(assignment, "assignment")
        row = await self.gateway.fetchrow(
            f"""
            update assignment
            set
              title = $3,
              total_number_hours = $4,
              hourly_cost = $5,
              ht_fund = $6,
              activity_description = $7
            where notice_protocol = $1 and code = $2
            returning {", ".join(ASSIGNMENT_COLUMNS)}
            """,
            assignment.notice_protocol,
            assignment.code,
            assignment.title,
            assignment.total_number_hours,
            assignment.hourly_cost,
            assignment.ht_fund,
            assignment.activity_description,
        )
        if row is None:
            raise RepositoryNotFoundError("assignment not found")
        return Assignment(**row)

    async def remove(self, assignment: Assignment) -> bool:
        _require(assignment, "assignment")
        removed = await self.gateway.execute(
            "delete from assignment where notice_protocol = $1 and code = $2",
            assignment.notice_protocol,
            assignment.code,
        )
        return removed > 0

    async def exists(self, assignment: Assignment) -> bool:
        _require(assignment, "assignment")
        row = await self.gateway.fetchrow(
            "select 1 as found from assignment where notice_protocol = $1 and code = $2",
            assignment.notice_protocol,
            assignment.code,
        )
        return row is not None

    async def find_by_id(self, assignment_id: int) -> Assignment | None:
        _require(assignment_id, "assignment id")
        row = await self.gateway.fetchrow(
            f"select {', '.join(ASSIGNMENT_COLUMNS)} from assignment where id = $1",
            assignment_id,
        )
        return Assignment(**row) if row is not None else None

    async def find_by_notice(self, notice_protocol: str) -> list[Assignment]:
        _require(notice_protocol, "notice protocol")
        return await self.search(AssignmentFilter(notice_protocol=notice_protocol))

    async def find_by_student(self, student: str) -> list[Assignment]:
        _require(student, "student email")
        return await self.search(AssignmentFilter(student=student))

    async def search(self, assignment_filter: AssignmentFilter) -> list[Assignment]:
        where, params = _build_where(assignment_filter.model_dump())
        rows = await self.gateway.fetch(
            f"select {', '.join(ASSIGNMENT_COLUMNS)} from assignment {where} order by id",
            *params,
        )
        return [Assignment(**row) for row in rows]


class ApplicationSheetRepository:
    def __init__(self, gateway: PostgresGateway) -> None:
        self.gateway = gateway

    async def create(self, sheet: ApplicationSheet) -> ApplicationSheet:
        _require(sheet, "application sheet")
        await self.gateway.execute(
            "insert into application_sheet (notice_protocol, documents_to_attach) values ($1, $2)",
            sheet.notice_protocol,
            sheet.documents_to_attach,
        )
        return sheet

    async def update(self, sheet: ApplicationSheet) -> ApplicationSheet:
        _require(sheet, "application sheet")
        updated = await self.gateway.execute(
            "update application_sheet set documents_to_attach = $2 where notice_protocol = $1",
            sheet.notice_protocol,
            sheet.documents_to_attach,
        )
        if updated == 0:
            raise RepositoryNotFoundError("the application sheet doesn't exists")
        return sheet

    async def upsert(self, sheet: ApplicationSheet) -> ApplicationSheet:
        _require(sheet, "application sheet")
        await self.gateway.execute(
            """
            insert into application_sheet (notice_protocol, documents_to_attach)
            values ($1, $2)
            on conflict (notice_protocol) do update set documents_to_attach = excluded.documents_to_attach
            """,
            sheet.notice_protocol,
            sheet.documents_to_attach,
        )
        return sheet

    async def remove(self, sheet: ApplicationSheet) -> bool:
        _require(sheet, "application sheet")
        removed = await self.gateway.execute(
            "delete from application_sheet where notice_protocol = $1",
            sheet.notice_protocol,
        )
        return removed > 0

    async def find_by_notice(self, notice_protocol: str) -> ApplicationSheet | None:
        _require(notice_protocol, "notice protocol")
        row = await self.gateway.fetchrow(
            "select notice_protocol, documents_to_attach from application_sheet where notice_protocol = $1",
            notice_protocol,
        )
        return ApplicationSheet(**row) if row is not None else None


class CommentRepository:
    def __init__(self, gateway: PostgresGateway) -> None:
        self.gateway = gateway

    async def create(self, comment: Comment) -> Comment:
        _require(comment, "comment")
        await self.gateway.execute(
            "insert into comment (notice_protocol, author, text) values ($1, $2, $3)",
            comment.notice_protocol,
            comment.author,
            comment.text,
        )
        return comment

    async def update(self, comment: Comment) -> Comment:
        _require(comment, "comment")
        updated = await self.gateway.execute(
            "update comment set author = $2, text = $3 where notice_protocol = $1",
            comment.notice_protocol,
            comment.author,
            comment.text,
        )
        if updated == 0:
            raise RepositoryNotFoundError("the comment doesn't exists")
        return comment

    async def upsert(self, comment: Comment) -> Comment:
        _require(comment, "comment")
        await self.gateway.execute(
            """
            insert into comment (notice_protocol, author, text)
            values ($1, $2, $3)
            on conflict (notice_protocol) do update set author = excluded.author, text = excluded.text
            """,
            comment.notice_protocol,
            comment.author,
            comment.text,
        )
        return comment

    async def remove(self, comment: Comment) -> bool:
        _require(comment, "comment")
        removed = await self.gateway.execute("delete from comment where notice_protocol = $1", comment.notice_protocol)
        return removed > 0

    async def find_by_protocol(self, notice_protocol: str) -> Comment | None:
        _require(notice_protocol, "notice protocol")
        row = await self.gateway.fetchrow(
            "select notice_protocol, author, text from comment where notice_protocol = $1",
            notice_protocol,
        )
        return Comment(**row) if row is not None else None


class UserRepository:
    def __init__(self, gateway: PostgresGateway) -> None:
        self.gateway = gateway

    async def create(self, user: User) -> User:
        _require(user, "user")
        if isinstance(user, Student):
            await self.gateway.execute(
                """
                with created as (
                  insert into "user" (email, name, surname, role, verified)
                  values ($1, $2, $3, $4, $5)
                  returning email
                )
                insert into student (user_email, registration_number, birth_date)
                select email, $6, $7 from created
                """,
                user.email,
                user.name,
                user.surname,
                user.role.value,
                user.verified,
                user.registration_number,
                user.birth_date,
            )
        else:
            await self.gateway.execute(
                'insert into "user" (email, name, surname, role, verified) values ($1, $2, $3, $4, $5)',
                user.email,
                user.name,
                user.surname,
                user.role.value,
                user.verified,
            )
        return user

    async def update(self, user: User) -> User:
        _require(user, "user")
        if isinstance(user, Student):
            updated = await self.gateway.execute(
                """
                with updated as (
                  update "user" set name = $2, surname = $3, verified = $4
                  where email = $1
                  returning email
                )
                update student
                set registration_number = $5, birth_date = $6
                from updated
                where student.user_email = updated.email
                """,
                user.email,
                user.name,
                user.surname,
                user.verified,
                user.registration_number,
                user.birth_date,
            )
        else:
            updated = await self.gateway.execute(
                'update "user" set name = $2, surname = $3, role = $4, verified = $5 where email = $1',
                user.email,
                user.name,
                user.surname,
                user.role.value,
                user.verified,
            )
        if updated == 0:
            raise RepositoryNotFoundError("user not found")
        return user

    async def delete(self, email: str) -> bool:
        _require(email, "user email")
        return await self.gateway.execute('delete from "user" where email = $1', email) > 0

    async def exists(self, email: str) -> bool:
        _require(email, "user email")
        row = await self.gateway.fetchrow('select 1 as found from "user" where email = $1', email)
        return row is not None

    async def find_by_email(self, email: str) -> User | None:
        _require(email, "user email")
        row = await self.gateway.fetchrow(f"{STUDENT_SELECT} where u.email = $1", email)
        return self._user_from_row(row) if row is not None else None

    async def find_student(self, email: str) -> Student | None:
        user = await self.find_by_email(email)
        return user if isinstance(user, Student) else None

    async def search(self, user_filter: UserFilter) -> list[User]:
        where, params = _build_where(user_filter.model_dump(), alias="u")
        rows = await self.gateway.fetch(f"{STUDENT_SELECT} {where} order by u.email", *params)
        return [self._user_from_row(row) for row in rows]

    async def find_all(self) -> list[User]:
        return await self.search(UserFilter())

    @staticmethod
    def _user_from_row(row: dict[str, Any]) -> User:
        if row.get("registration_number") is not None:
            return Student(**row)
        return User(**{key: row[key] for key in ("email", "name", "surname", "role", "verified")})


class RatingRepository:
    def __init__(self, gateway: PostgresGateway, users: UserRepository) -> None:
        self.gateway = gateway
        self.users = users

    async def create(self, rating: RatingIn) -> Rating:
        _require(rating, "rating")
        student = await self._require_student(rating.student)
        await self.gateway.execute(
            "insert into rating (student, assignment_id, titles_score, interview_score) values ($1, $2, $3, $4)",
            rating.student,
            rating.assignment_id,
            rating.titles_score,
            rating.interview_score,
        )
        return Rating(
            student=student,
            assignment_id=rating.assignment_id,
            titles_score=rating.titles_score,
            interview_score=rating.interview_score,
        )

    async def update(self, rating: RatingIn) -> Rating:
        _require(rating, "rating")
        if not await self.exists(rating.student, rating.assignment_id):
            raise RepositoryNotFoundError("the rating doesn't exists")
        await self.gateway.execute(
            """
            update rating
            set titles_score = $3, interview_score = $4
            where student = $1 and assignment_id = $2
            """,
            rating.student,
            rating.assignment_id,
            rating.titles_score,
            rating.interview_score,
        )
        return await self.find_by_id(rating.student, rating.assignment_id)

    async def remove(self, student_email: str, assignment_id: int) -> bool:
        _require(student_email, "student email")
        _require(assignment_id, "assignment id")
        removed = await self.gateway.execute(
            "delete from rating where student = $1 and assignment_id = $2",
            student_email,
            assignment_id,
        )
        return removed > 0

    async def exists(self, student_email: str, assignment_id: int) -> bool:
        _require(student_email, "student email")
        _require(assignment_id, "assignment id")
        row = await self.gateway.fetchrow(
            "select 1 as found from rating where student = $1 and assignment_id = $2",
            student_email,
            assignment_id,
        )
        return row is not None

    async def find_by_id(self, student_email: str, assignment_id: int) -> Rating:
        _require(student_email, "student email")
        _require(assignment_id, "assignment id")
        row = await self.gateway.fetchrow(
            f"{RATING_SELECT} where r.student = $1 and r.assignment_id = $2",
            student_email,
            assignment_id,
        )
        if row is None:
            raise RepositoryNotFoundError("no rating was found")
        return self._rating_from_row(row)

    async def find_by_student(self, student_email: str) -> list[Rating]:
        _require(student_email, "student email")
        rows = await self.gateway.fetch(f"{RATING_SELECT} where r.student = $1", student_email)
        return [self._rating_from_row(row) for row in rows]

    async def find_by_assignment(self, assignment_id: int) -> list[Rating]:
        _require(assignment_id, "assignment id")
        rows = await self.gateway.fetch(f"{RATING_SELECT} where r.assignment_id = $1", assignment_id)
        return [self._rating_from_row(row) for row in rows]

    async def find_by_protocol(self, notice_protocol: str) -> list[Rating]:
        _require(notice_protocol, "notice protocol")
        rows = await self.gateway.fetch(
            f"{RATING_SELECT} join assignment a on a.id = r.assignment_id where a.notice_protocol = $1",
            notice_protocol,
        )
        return [self._rating_from_row(row) for row in rows]

    async def _require_student(self, email: str) -> Student:
        student = await self.users.find_student(email)
        if student is None:
            raise RepositoryNotFoundError(f"student not found: {email}")
        return student

    @staticmethod
    def _rating_from_row(row: dict[str, Any]) -> Rating:
        student = Student(
            email=row["email"],
            name=row["name"],
            surname=row["surname"],
            role=row["role"],
            verified=row["verified"],
            registration_number=row["registration_number"],
            birth_date=row["birth_date"],
        )
        return Rating(
            student=student,
            assignment_id=row["assignment_id"],
            titles_score=row["titles_score"],
            interview_score=row["interview_score"],
        )


class DocumentRepository:
    def __init__(self, gateway: PostgresGateway) -> None:
        self.gateway = gateway

    async def create(self, document: Document) -> Document:
        _require(document, "document")
        await self.gateway.execute(
            "insert into document (file_name, student, notice_protocol, file) values ($1, $2, $3, $4)",
            document.file_name,
            document.student,
            document.notice_protocol,
            document.file,
        )
        return document

    async def update(self, document: Document) -> Document:
        _require(document, "document")
        updated = await self.gateway.execute(
            "update document set file = $4 where file_name = $1 and student = $2 and notice_protocol = $3",
            document.file_name,
            document.student,
            document.notice_protocol,
            document.file,
        )
        if updated == 0:
            raise RepositoryNotFoundError("the document doesn't exists")
        return document

    async def remove(self, document: Document) -> bool:
        _require(document, "document")
        removed = await self.gateway.execute(
            "delete from document where file_name = $1 and student = $2 and notice_protocol = $3",
            document.file_name,
            document.student,
            document.notice_protocol,
        )
        return removed > 0

    async def exists(self, document: Document) -> bool:
        _require(document, "document")
        row = await self.gateway.fetchrow(
            "select 1 as found from document where file_name = $1 and student = $2 and notice_protocol = $3",
            document.file_name,
            document.student,
            document.notice_protocol,
        )
        return row is not None

    async def find_by_candidature(self, student: str, notice_protocol: str) -> list[Document]:
        _require(student, "student email")
        _require(notice_protocol, "notice protocol")
        rows = await self.gateway.fetch(
            """
            select file_name, student, notice_protocol, file
            from document
            where student = $1 and notice_protocol = $2
            order by file_name
            """,
            student,
            notice_protocol,
        )
        return [Document(**row) for row in rows]


class CandidatureRepository:
    def __init__(self, gateway: PostgresGateway, documents: DocumentRepository) -> None:
        self.gateway = gateway
        self.documents = documents

    async def create(self, candidature: Candidature) -> Candidature:
        _require(candidature, "candidature")
        last_edit = candidature.last_edit or datetime.now(timezone.utc)
        documents = self._own_documents(candidature)
        await self.gateway.execute(
            """
            with created as (
              insert into candidature (student, notice_protocol, state, last_edit)
              values ($1, $2, $3, $4)
              returning student, notice_protocol
            )
            insert into document (file_name, student, notice_protocol, file)
            select f.file_name, created.student, created.notice_protocol, f.file
            from created
            cross join unnest($5::text[], $6::bytea[]) as f(file_name, file)
            """,
            candidature.student,
            candidature.notice_protocol,
            candidature.state.value,
            last_edit,
            [document.file_name for document in documents],
            [document.file for document in documents],
        )
        return candidature.model_copy(update={"last_edit": last_edit, "documents": documents})

    async def update(self, candidature: Candidature) -> Candidature:
        """Overwrite the candidature row and sync its documents by file name."""
        _require(candidature, "candidature")
        last_edit = datetime.now(timezone.utc)
        updated = await self.gateway.execute(
            "update candidature set state = $3, last_edit = $4 where student = $1 and notice_protocol = $2",
            candidature.student,
            candidature.notice_protocol,
            candidature.state.value,
            last_edit,
        )
        if updated == 0:
            raise RepositoryNotFoundError("candidature not found")

        documents = self._own_documents(candidature)
        persisted = await self.documents.find_by_candidature(candidature.student, candidature.notice_protocol)
        actions = reconcile(persisted, documents, key_of=lambda document: document.file_name)
        await execute_actions(
            actions,
            create=self.documents.create,
            update=self.documents.update,
            remove=self.documents.remove,
        )
        return candidature.model_copy(update={"last_edit": last_edit, "documents": documents})

    async def remove(self, candidature: Candidature) -> bool:
        _require(candidature, "candidature")
        removed = await self.gateway.execute(
            "delete from candidature where student = $1 and notice_protocol = $2",
            candidature.student,
            candidature.notice_protocol,
        )
        return removed > 0

    async def exists(self, candidature: Candidature) -> bool:
        _require(candidature, "candidature")
        row = await self.gateway.fetchrow(
            "select 1 as found from candidature where student = $1 and notice_protocol = $2",
            candidature.student,
            candidature.notice_protocol,
        )
        return row is not None

    async def find_by_id(self, student: str, notice_protocol: str) -> Candidature:
        _require(student, "student email")
        _require(notice_protocol, "notice protocol")
        row = await self.gateway.fetchrow(
            """
            select student, notice_protocol, state, last_edit
            from candidature
            where student = $1 and notice_protocol = $2
            """,
            student,
            notice_protocol,
        )
        if row is None:
            raise RepositoryNotFoundError("candidature not found")
        return await self._with_documents(row)

    async def find_by_student(self, student: str) -> list[Candidature]:
        _require(student, "student email")
        rows = await self.gateway.fetch(
            "select student, notice_protocol, state, last_edit from candidature where student = $1",
            student,
        )
        return [await self._with_documents(row) for row in rows]

    async def find_by_notice(self, notice_protocol: str) -> list[Candidature]:
        _require(notice_protocol, "notice protocol")
        rows = await self.gateway.fetch(
            "select student, notice_protocol, state, last_edit from candidature where notice_protocol = $1",
            notice_protocol,
        )
        return [await self._with_documents(row) for row in rows]

    async def _with_documents(self, row: dict[str, Any]) -> Candidature:
        documents = await self.documents.find_by_candidature(row["student"], row["notice_protocol"])
        return Candidature(**row, documents=documents)

    @staticmethod
    def _own_documents(candidature: Candidature) -> list[Document]:
        update = {"student": candidature.student, "notice_protocol": candidature.notice_protocol}
        return [document.model_copy(update=update) for document in candidature.documents]


@lru_cache
def get_assignment_repository() -> AssignmentRepository:
    return AssignmentRepository(get_gateway())


@lru_cache
def get_user_repository() -> UserRepository:
    return UserRepository(get_gateway())


@lru_cache
def get_rating_repository() -> RatingRepository:
    return RatingRepository(get_gateway(), get_user_repository())


@lru_cache
def get_candidature_repository() -> CandidatureRepository:
    gateway = get_gateway()
    return CandidatureRepository(gateway, DocumentRepository(gateway))
