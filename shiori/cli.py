from __future__ import annotations

from pathlib import Path

import click

from shiori.extensions import db
from shiori.models import User
from shiori.services.data_transfer import (
    IMPORT_MODES,
    KIND_BOOKMARKS,
    KIND_TAGS,
    MODE_SKIP,
    build_export_csv,
    reconcile_import,
)
from shiori.services.repository import SqlAlchemyRepository


def _require_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise click.ClickException(f"user {user_id} does not exist")
    return user


def register_cli(app):
    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        click.echo("Initialized Shiori database.")

    @app.cli.command("import-data")
    @click.option(
        "--type",
        "kind",
        type=click.Choice([KIND_BOOKMARKS, KIND_TAGS]),
        default=KIND_BOOKMARKS,
        show_default=True,
    )
    @click.option(
        "--file",
        "file_path",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        required=True,
    )
    @click.option("--preview", is_flag=True, help="Report without writing.")
    @click.option(
        "--mode",
        type=click.Choice(list(IMPORT_MODES[KIND_BOOKMARKS])),
        default=MODE_SKIP,
        show_default=True,
    )
    @click.option("--user", "user_id", type=int, default=1, show_default=True)
    def import_data_command(kind, file_path, preview, mode, user_id):
        """Import bookmarks or tags from a CSV file."""
        if mode not in IMPORT_MODES[kind]:
            raise click.BadParameter(f"{mode} is not supported for {kind}")
        _require_user(user_id)

        csv_text = file_path.read_text(encoding="utf-8-sig")
        result = reconcile_import(
            csv_text,
            kind,
            owner_id=user_id,
            repository=SqlAlchemyRepository(),
            preview=preview,
            mode=mode,
        )
        if preview:
            db.session.rollback()
            click.echo("Preview only, nothing was written.")
        else:
            db.session.commit()

        click.echo(f"imported: {result.imported}")
        click.echo(f"updated:  {result.updated}")
        click.echo(f"skipped:  {result.skipped}")
        if result.tags_created:
            click.echo(f"tags created: {', '.join(result.tags_created)}")
        for error in result.errors:
            click.echo(f"error: {error}", err=True)

    @app.cli.command("export-data")
    @click.option(
        "--type",
        "kind",
        type=click.Choice([KIND_BOOKMARKS, KIND_TAGS, "all"]),
        default="all",
        show_default=True,
    )
    @click.option(
        "--output",
        type=click.Path(path_type=Path),
        default=Path("export"),
        show_default=True,
    )
    @click.option("--user", "user_id", type=int, default=1, show_default=True)
    def export_data_command(kind, output, user_id):
        """Export bookmarks and/or tags as CSV.

        With ``--type all`` the output is a directory receiving
        ``bookmarks.csv`` and ``tags.csv``.
        """
        _require_user(user_id)
        repository = SqlAlchemyRepository()

        if kind == "all":
            output.mkdir(parents=True, exist_ok=True)
            targets = [
                (KIND_BOOKMARKS, output / "bookmarks.csv"),
                (KIND_TAGS, output / "tags.csv"),
            ]
        else:
            if output.suffix.lower() != ".csv":
                output.mkdir(parents=True, exist_ok=True)
                output = output / f"{kind}.csv"
            else:
                output.parent.mkdir(parents=True, exist_ok=True)
            targets = [(kind, output)]

        for target_kind, target in targets:
            target.write_text(
                build_export_csv(target_kind, user_id, repository), encoding="utf-8"
            )
            click.echo(f"Wrote {target_kind} to {target}")
