import os
import shutil
from enum import StrEnum
from typing import NoReturn

import IPython

from flaketrack.db import DB
from flaketrack.log import fatal

TABLES = ("project", "report_submission", "test_outcome", "flaky_test")


class Repl(StrEnum):
    SQL = "sql"
    PYTHON = "python"


def repl(db: DB, repl: Repl) -> NoReturn:
    match repl:
        case Repl.SQL:
            sql(db)
        case Repl.PYTHON:
            python(db)
    raise SystemExit(0)


def sql(db: DB) -> None:
    if not db.path:
        fatal(
            "The sql REPL requires --db-path: the duckdb CLI runs in a separate process "
            "and cannot see an in-memory database. Use --repl python instead."
        )
    db.connection.close()
    try:
        os.execvp("duckdb", ["duckdb", str(db.path)])
    except FileNotFoundError as err:
        if not shutil.which("duckdb"):
            fatal(
                "Install the duckdb CLI to use the duckdb SQL REPL: https://duckdb.org/docs/installation/.",
                "Alternatively, use --repl python.",
            )
        else:
            raise err


def python(db: DB) -> None:
    sql = db.connection.sql
    for table in TABLES:
        n_rows = sql(f"select count(*) from {table}").fetchone()
        print(f"{table}: {n_rows[0] if n_rows else '?'} rows")
    print("Example queries:\n")
    example_queries = [
        "sql(\"select test_name, flake_rate from flaky_test where status = 'active'\")",
        "sql(\"select test_name, count(*) from test_outcome where status = 'flaky' group by 1\")",
    ]
    for q in example_queries:
        print(q)
    print("https://duckdb.org/docs/api/python/dbapi.html")
    IPython.start_ipython(argv=[], user_ns={"conn": db.connection, "sql": sql})
