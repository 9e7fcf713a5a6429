"""kbtree command line.

Usage:
    kbtree sync                 # reconcile the content directory once
    kbtree sync --watch         # ... then keep reconciling on changes
    kbtree tree [DIR_ID]        # list one level of the tree
    kbtree show ID_OR_CUSTOM_ID # print a document
"""

from __future__ import annotations

import json
import time
from pathlib import Path

import click

from kbtree._logging import configure_logging
from kbtree.config import KbConfig, load_config
from kbtree.errors import KbTreeError
from kbtree.models import EntryKind, TreeEntry


def output(data, as_json: bool = False) -> None:
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def format_entries(entries: list[TreeEntry]) -> str:
    if not entries:
        return "(empty)"
    width = max(len(e.display_name) for e in entries)
    lines = []
    for e in entries:
        marker = "/" if e.kind is EntryKind.DIRECTORY else " "
        lines.append(f"{e.display_name + marker:<{width + 1}}  {e.link_id}")
    return "\n".join(lines)


def _config(ctx: click.Context) -> KbConfig:
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(**ctx.obj["options"])
        except KbTreeError as e:
            raise click.ClickException(str(e)) from e
    return ctx.obj["config"]


@click.group()
@click.version_option(package_name="kbtree", prog_name="kbtree")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="TOML config file")
@click.option("--db", "db_path", help="DuckDB database file")
@click.option("--content-dir", type=click.Path(file_okay=False, path_type=Path), help="Content directory")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, db_path: str | None, content_dir: Path | None):
    """kbtree: mirror a markdown knowledge base into a browsable tree."""
    configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["options"] = {"path": config_path, "db_path": db_path, "content_dir": content_dir}


@cli.command()
@click.option("--watch", is_flag=True, help="Keep running and re-sync when files change")
@click.option("--json", "as_json", is_flag=True, help="Output the report as JSON")
@click.pass_context
def sync(ctx: click.Context, watch: bool, as_json: bool):
    """Reconcile the content directory with the database."""
    config = _config(ctx)
    with config.make_store() as store:
        engine = config.make_engine(store)
        try:
            report = engine.run()
        except KbTreeError as e:
            raise click.ClickException(f"sync rolled back: {e}") from e

        if as_json:
            output(report.to_dict(), as_json=True)
        else:
            counts = ", ".join(f"{k}={v}" for k, v in sorted(report.counts.items())) or "no changes"
            click.echo(f"{report.outcome.value}: {counts} ({report.entries_walked} entries walked)")
            for warning in report.warnings:
                click.echo(f"warning: {warning}", err=True)

        if not watch:
            return

        from kbtree.watch import ContentWatcher

        with ContentWatcher(engine, config.content_dir, config.debounce_seconds, config.extensions):
            click.echo(f"Watching {config.content_dir} (Ctrl-C to stop)")
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                pass


@cli.command()
@click.argument("directory_id", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def tree(ctx: click.Context, directory_id: str | None, as_json: bool):
    """List the children of DIRECTORY_ID (the root by default)."""
    from kbtree.sidebar import SidebarTreeService

    config = _config(ctx)
    with config.make_store() as store:
        service = SidebarTreeService(store)
        try:
            entries = service.list_children(directory_id)
            crumbs = service.breadcrumbs(directory_id) if directory_id else []
        except KbTreeError as e:
            raise click.ClickException(str(e)) from e

    if as_json:
        output([e.to_dict() for e in entries], as_json=True)
        return
    heading = " / ".join([config.title or "kbtree"] + [d.display_name for d in crumbs if not d.is_root])
    click.echo(heading)
    click.echo(format_entries(entries))


@cli.command()
@click.argument("key")
@click.option("--meta", is_flag=True, help="Only print metadata")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, key: str, meta: bool, as_json: bool):
    """Print the document with identifier or custom id KEY."""
    from kbtree.sidebar import SidebarTreeService

    config = _config(ctx)
    with config.make_store() as store:
        try:
            document = SidebarTreeService(store).get_document(key)
        except KbTreeError as e:
            raise click.ClickException(str(e)) from e

    if as_json:
        data = document.to_dict()
        if not meta:
            data["content"] = document.content
        output(data, as_json=True)
        return

    click.echo(f"# {document.title or document.file_name}")
    click.echo(f"path:         {document.path}")
    if document.custom_id:
        click.echo(f"custom_id:    {document.custom_id}")
    if document.tags:
        click.echo(f"tags:         {', '.join(document.tag_list)}")
    click.echo(f"reading_time: {document.reading_time} min")
    if not meta:
        click.echo()
        click.echo(document.content)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
