from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import typer
from xdg_base_dirs import xdg_data_home

from flaketrack.db import DBConfig


@dataclass
class GlobalOptions:
    db_config: DBConfig
    json: bool
    verbose: int


options: GlobalOptions


def set_options(
    db_path: Annotated[
        Optional[Path],
        typer.Option(
            help=(
                "DuckDB database file. Defaults to $XDG_DATA_HOME/flaketrack/flaketrack.duckdb. "
                "Use `:memory:` for a throwaway in-memory database."
            ),
        ),
    ] = None,
    json: Annotated[
        bool, typer.Option("--json", help="Print results as JSON.")
    ] = False,
    verbose: Annotated[int, typer.Option(help="Verbosity of rendered output.")] = 1,
):
    if db_path is None:
        dir = Path(xdg_data_home()) / "flaketrack"
        dir.mkdir(parents=True, exist_ok=True)
        db_path = dir / "flaketrack.duckdb"
    elif str(db_path) == ":memory:":
        db_path = None

    global options
    options = GlobalOptions(
        db_config=DBConfig(path=db_path),
        json=json,
        verbose=verbose,
    )
