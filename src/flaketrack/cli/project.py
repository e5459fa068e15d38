from typing import Annotated

import typer

from flaketrack import cli, queries
from flaketrack.cli.output import print_result
from flaketrack.cli.reports import ProjectsReport
from flaketrack.log import info

app = typer.Typer(rich_markup_mode="rich")

NameArgument = Annotated[str, typer.Argument(help="Name of the project.")]


@app.command("list")
def list_() -> None:
    """List all projects."""
    with cli.options.db_config.connect() as db:
        print_result(ProjectsReport(queries.projects(db)))


@app.command()
def create(name: NameArgument) -> None:
    """Create a project to ingest reports into."""
    with cli.options.db_config.connect() as db:
        print_result(db.create_project(name))


@app.command()
def show(name: NameArgument) -> None:
    """Show flaky-test and run statistics for a project."""
    with cli.options.db_config.connect() as db:
        project = queries.project_by_name(db, name)
        print_result(queries.project_stats(db, project))


@app.command()
def delete(
    name: NameArgument,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
) -> None:
    """
    Delete a project with all of its report submissions, test outcomes and flaky-test records.
    """
    with cli.options.db_config.connect() as db:
        project = queries.project_by_name(db, name)
        if not yes:
            typer.confirm(f"Delete project {name} and all of its data?", abort=True)
        db.delete_project(project.id)
        info("Deleted project", name)
