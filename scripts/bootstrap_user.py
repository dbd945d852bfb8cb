#!/usr/bin/env python3
"""Emit deterministic SQL that seeds a bandi user with a given role."""

from __future__ import annotations

import argparse

ROLES = ("Teaching Office", "Professor", "DDI", "Student")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(
    *,
    email: str,
    name: str,
    surname: str,
    role: str,
    registration_number: str | None = None,
    birth_date: str | None = None,
) -> str:
    email_value = _quote_sql(email)
    statements = [
        "-- bandi user bootstrap SQL",
        "-- Run this against the bandi database with a privileged session.",
        "",
        'insert into "user" (email, name, surname, role, verified)',
        f"values ({email_value}, {_quote_sql(name)}, {_quote_sql(surname)}, {_quote_sql(role)}, true)",
        "on conflict (email) do update",
        "set name = excluded.name, surname = excluded.surname, role = excluded.role, verified = true;",
    ]
    if role == "Student":
        if not registration_number or not birth_date:
            raise ValueError("students need a registration number and a birth date")
        statements.extend(
            [
                "",
                "insert into student (user_email, registration_number, birth_date)",
                f"values ({email_value}, {_quote_sql(registration_number)}, {_quote_sql(birth_date)}::date)",
                "on conflict (user_email) do update",
                "set registration_number = excluded.registration_number, birth_date = excluded.birth_date;",
            ]
        )
    return "\n".join(statements) + "\n"


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to bootstrap a bandi user.")
    parser.add_argument("--email", required=True, help="User email, also the login identity")
    parser.add_argument("--name", required=True)
    parser.add_argument("--surname", required=True)
    parser.add_argument("--role", choices=ROLES, default="Teaching Office")
    parser.add_argument("--registration-number", help="Required for students")
    parser.add_argument("--birth-date", help="ISO date, required for students")
    args = parser.parse_args()

    try:
        sql = render_sql(
            email=args.email,
            name=args.name,
            surname=args.surname,
            role=args.role,
            registration_number=args.registration_number,
            birth_date=args.birth_date,
        )
    except ValueError as exc:
        parser.error(str(exc))
    print(sql)


if __name__ == "__main__":
    main()
