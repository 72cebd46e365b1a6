"""grimoire CLI: prompts as Markdown files, indexed in SQLite.

Commands:
    grimoire init [NAME]            create grimoire.toml + store dirs
    grimoire add NAME               new prompt (body from -c, --file or stdin)
    grimoire show KEY               print a prompt (KEY = id or exact name)
    grimoire list                   list prompts (--tag, --fav, --pinned)
    grimoire search QUERY           full-text search (--tag, --since, --until, --snippets)
    grimoire suggest PREFIX         complete a prompt name
    grimoire edit KEY               change name/body/tags ($EDITOR if no options)
    grimoire rm KEY [--hard]        archive (or permanently delete) a prompt
    grimoire tag ...                list/add/remove/rename/merge tags
    grimoire fav KEY / pin KEY      toggle favorite / pinned
    grimoire reorder fav|pin KEY... set favorite / pin order
    grimoire archive ...            list/restore/purge archived prompts
    grimoire sync                   reconcile the index with the files
    grimoire check                  report drift between files and index
    grimoire reindex                drop and rebuild the index
    grimoire watch                  keep the index live while files change
"""

from __future__ import annotations

import contextlib
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import click

from grimoire.app import Grimoire
from grimoire.config import init_config, load_config
from grimoire.errors import GrimoireError, NotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from grimoire.config import GrimoireConfig
    from grimoire.models import Prompt, SyncResult

_LOG_FORMAT = "%(asctime)s %(name)s %(message)s"
_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg(ctx: click.Context) -> GrimoireConfig:
    try:
        return load_config(ctx.obj.get("root"))
    except GrimoireError as exc:
        raise click.ClickException(str(exc)) from exc


def _setup_logging(cfg: GrimoireConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, cfg.logging.level, logging.INFO)
    logging.basicConfig(level=level, format=_LOG_FORMAT)

    log_path = str(cfg.log_path)
    root_logger = logging.getLogger()
    if any(getattr(h, "baseFilename", None) == log_path for h in root_logger.handlers):
        return
    cfg.index_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, encoding="utf-8", delay=True)
    handler.setLevel(logging.WARNING)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root_logger.addHandler(handler)


@contextlib.contextmanager
def _session(ctx: click.Context) -> Iterator[Grimoire]:
    """Open the store; turn any GrimoireError into a one-line CLI error."""
    cfg = _load_cfg(ctx)
    _setup_logging(cfg, ctx.obj.get("verbose", False))
    try:
        with Grimoire.open(cfg) as g:
            yield g
    except GrimoireError as exc:
        logging.getLogger("grimoire.cli").debug("command failed", exc_info=True)
        raise click.ClickException(str(exc)) from exc


def _resolve(g: Grimoire, key: str) -> Prompt:
    """Look a prompt up by id, then by exact name."""
    try:
        return g.prompts.get_by_id(key)
    except NotFoundError:
        return g.prompts.get_by_name(key)


def _read_body(content: str | None, file: str | None) -> str | None:
    if content is not None:
        return content
    if file is not None:
        return Path(file).read_text(encoding="utf-8")
    stdin = click.get_text_stream("stdin")
    if not stdin.isatty():
        return stdin.read()
    return None


def _fmt_time(ts: datetime | None) -> str:
    return ts.isoformat(timespec="seconds") if ts else "-"


def _highlight(text: str, ranges: list[tuple[int, int]]) -> str:
    out: list[str] = []
    pos = 0
    for start, end in ranges:
        out.append(text[pos:start])
        out.append(click.style(text[start:end], bold=True))
        pos = end
    out.append(text[pos:])
    return "".join(out).replace("\n", " ")


def _echo_prompt_line(p: Prompt) -> None:
    marks = ("*" if p.is_favorite else " ") + ("^" if p.is_pinned else " ")
    tags = f"  [{', '.join(p.tags)}]" if p.tags else ""
    click.echo(f"{marks} {p.id}  {p.name}{tags}")


def _echo_sync(result: SyncResult) -> None:
    click.echo(
        f"Scanned {result.scanned}: {result.created} created, {result.updated} updated, "
        f"{result.unchanged} unchanged, {result.removed} removed"
    )
    for path, error in sorted(result.errors.items()):
        click.echo(f"  error: {path}: {error}", err=True)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="grimoire")
@click.option("--root", type=click.Path(file_okay=False), default=None, envvar="GRIMOIRE_HOME",
              help="Store root (default: nearest grimoire.toml, else ~/.grimoire)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, root: str | None, verbose: bool) -> None:
    """grimoire: a prompt library kept as Markdown files."""
    ctx.ensure_object(dict)
    ctx.obj["root"] = root
    ctx.obj["verbose"] = verbose


# ---------------------------------------------------------------------------
# grimoire init
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("name", required=False)
@click.option("--dir", "directory", default=None, help="Store root (default: --root or cwd)")
@click.pass_context
def init(ctx: click.Context, name: str | None, directory: str | None) -> None:
    """Create grimoire.toml and the store directories."""
    root_path = Path(directory or ctx.obj.get("root") or ".").resolve()
    try:
        config_path = init_config(root_path, name=name)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("grimoire.toml already exists, skipping init")

    ctx.obj["root"] = str(root_path)
    with _session(ctx) as g:
        click.echo(f"Prompts dir : {g.cfg.prompts_dir}")
        click.echo(f"Archive dir : {g.cfg.archive_dir}")
        click.echo(f"Index       : {g.cfg.db_path}")
        _echo_sync(g.indexer.full_sync())


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("name")
@click.option("--content", "-c", default=None, help="Prompt body (default: --file or stdin)")
@click.option("--file", "-f", "file", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--tag", "-t", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--template", is_flag=True, help="Mark as a template")
@click.option("--fav", is_flag=True, help="Mark as favorite")
@click.option("--pin", is_flag=True, help="Pin")
@click.pass_context
def add(ctx: click.Context, name: str, content: str | None, file: str | None,
        tags: tuple[str, ...], template: bool, fav: bool, pin: bool) -> None:
    """Create a prompt."""
    body = _read_body(content, file) or ""
    with _session(ctx) as g:
        p = g.prompts.create(
            name, body, tags=list(tags), is_template=template,
            is_favorite=fav or None, is_pinned=pin or None,
        )
        click.echo(p.id)


@cli.command()
@click.argument("key")
@click.option("--meta", is_flag=True, help="Header only, no body")
@click.pass_context
def show(ctx: click.Context, key: str, meta: bool) -> None:
    """Print a prompt by id or name."""
    with _session(ctx) as g:
        p = _resolve(g, key)
        click.echo(f"id       : {p.id}")
        click.echo(f"name     : {p.name}")
        click.echo(f"tags     : {', '.join(p.tags) or '-'}")
        click.echo(f"version  : {p.version}")
        click.echo(f"created  : {_fmt_time(p.created)}")
        click.echo(f"updated  : {_fmt_time(p.updated)}")
        flags = [f for f, on in (("template", p.is_template), ("favorite", p.is_favorite),
                                 ("pinned", p.is_pinned)) if on]
        if flags:
            click.echo(f"flags    : {', '.join(flags)}")
        if not meta:
            click.echo("")
            click.echo(p.content or "", nl=not (p.content or "").endswith("\n"))


@cli.command("list")
@click.option("--tag", "-t", "tags", multiple=True, help="Only prompts with any of these tags")
@click.option("--fav", is_flag=True, help="Favorites only, in favorite order")
@click.option("--pinned", is_flag=True, help="Pinned only, in pin order")
@click.pass_context
def list_cmd(ctx: click.Context, tags: tuple[str, ...], fav: bool, pinned: bool) -> None:
    """List prompts, most recently updated first."""
    with _session(ctx) as g:
        if fav:
            prompts = g.prompts.favorites(with_content=False)
        elif pinned:
            prompts = g.prompts.pinned(with_content=False)
        elif tags:
            prompts = g.prompts.find_by_tags(list(tags), with_content=False)
        else:
            prompts = g.prompts.get_all(with_content=False)
        if not prompts:
            click.echo("No prompts found.")
            return
        for p in prompts:
            _echo_prompt_line(p)


@cli.command()
@click.argument("query")
@click.option("--tag", "-t", "tags", multiple=True, help="Only prompts with any of these tags")
@click.option("--since", type=click.DateTime(_DATE_FORMATS), default=None, help="Created on or after (UTC)")
@click.option("--until", type=click.DateTime(_DATE_FORMATS), default=None, help="Created on or before (UTC)")
@click.option("--snippets", "-s", is_flag=True, help="Show the matching part of each body")
@click.option("--limit", "-l", default=None, type=int, help="Max results (default: [search] limit)")
@click.pass_context
def search(ctx: click.Context, query: str, tags: tuple[str, ...], since: datetime | None,
           until: datetime | None, snippets: bool, limit: int | None) -> None:
    """Full-text search over prompt names and bodies."""
    filters = {"tags": list(tags) or None, "date_from": since, "date_to": until, "limit": limit}
    with _session(ctx) as g:
        if not snippets:
            results = g.prompts.search(query, with_content=False, **filters)
            if not results:
                click.echo("No matches.")
                return
            for p in results:
                _echo_prompt_line(p)
            return

        hits = g.prompts.search_hits(query, **filters)
        if not hits:
            click.echo("No matches.")
            return
        for hit in hits:
            _echo_prompt_line(hit.prompt)
            click.echo(f"    {_highlight(hit.snippet, hit.highlights)}")


@cli.command()
@click.argument("prefix")
@click.option("--limit", "-l", default=10, show_default=True, type=int)
@click.pass_context
def suggest(ctx: click.Context, prefix: str, limit: int) -> None:
    """Complete a prompt name."""
    with _session(ctx) as g:
        names = g.prompts.suggest(prefix, limit=limit)
        if not names:
            click.echo("No suggestions.")
            return
        for name in names:
            click.echo(name)


@cli.command()
@click.argument("key")
@click.option("--name", "-n", default=None, help="New name")
@click.option("--content", "-c", default=None, help="New body")
@click.option("--file", "-f", "file", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--tag", "-t", "tags", multiple=True, help="Replace tags (repeatable)")
@click.option("--template/--no-template", default=None)
@click.pass_context
def edit(ctx: click.Context, key: str, name: str | None, content: str | None, file: str | None,
         tags: tuple[str, ...], template: bool | None) -> None:
    """Change a prompt. With no options, opens the body in $EDITOR."""
    with _session(ctx) as g:
        p = _resolve(g, key)
        body = content if content is not None else (
            Path(file).read_text(encoding="utf-8") if file is not None else None
        )
        if body is None and name is None and not tags and template is None:
            edited = click.edit(p.content or "", extension=".md")
            if edited is None or edited == p.content:
                click.echo("No changes.")
                return
            body = edited
        updated = g.prompts.update(
            p.id,
            name=name,
            content=body,
            tags=list(tags) if tags else None,
            is_template=template,
        )
        click.echo(f"{updated.id} -> version {updated.version}")


@cli.command()
@click.argument("key")
@click.option("--hard", is_flag=True, help="Delete permanently instead of archiving")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def rm(ctx: click.Context, key: str, hard: bool, yes: bool) -> None:
    """Archive a prompt (or delete it with --hard)."""
    with _session(ctx) as g:
        p = _resolve(g, key)
        if hard and not yes:
            click.confirm(f"Permanently delete {p.name!r}?", abort=True)
        g.prompts.delete(p.id, hard=hard)
        click.echo(f"{'Deleted' if hard else 'Archived'} {p.id}")


@cli.command()
@click.argument("key")
@click.pass_context
def fav(ctx: click.Context, key: str) -> None:
    """Toggle favorite."""
    with _session(ctx) as g:
        p = _resolve(g, key)
        on = g.prompts.toggle_favorite(p.id)
        click.echo(f"{p.name}: {'favorite' if on else 'not favorite'}")


@cli.command()
@click.argument("key")
@click.pass_context
def pin(ctx: click.Context, key: str) -> None:
    """Toggle pinned."""
    with _session(ctx) as g:
        p = _resolve(g, key)
        on = g.prompts.toggle_pin(p.id)
        click.echo(f"{p.name}: {'pinned' if on else 'unpinned'}")


@cli.command()
@click.argument("which", type=click.Choice(["fav", "pin"]))
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def reorder(ctx: click.Context, which: str, keys: tuple[str, ...]) -> None:
    """Set the order of favorites (fav) or pinned prompts (pin), first KEY first."""
    with _session(ctx) as g:
        ids = [_resolve(g, key).id for key in keys]
        if which == "fav":
            count = g.prompts.reorder_favorites(ids)
        else:
            count = g.prompts.reorder_pins(ids)
        click.echo(f"Reordered: {count} prompt(s) rewritten")


# ---------------------------------------------------------------------------
# grimoire tag ...
# ---------------------------------------------------------------------------


@cli.group()
def tag() -> None:
    """Manage tags."""


@tag.command("list")
@click.pass_context
def tag_list(ctx: click.Context) -> None:
    with _session(ctx) as g:
        tags = g.tags.list_tags()
        if not tags:
            click.echo("No tags.")
            return
        for t in tags:
            click.echo(f"{t.count:4d}  {t.name}")


@tag.command("add")
@click.argument("key")
@click.argument("name")
@click.pass_context
def tag_add(ctx: click.Context, key: str, name: str) -> None:
    with _session(ctx) as g:
        p = g.tags.add_tag(_resolve(g, key).id, name)
        click.echo(f"{p.name}: {', '.join(p.tags)}")


@tag.command("remove")
@click.argument("key")
@click.argument("name")
@click.pass_context
def tag_remove(ctx: click.Context, key: str, name: str) -> None:
    with _session(ctx) as g:
        p = g.tags.remove_tag(_resolve(g, key).id, name)
        click.echo(f"{p.name}: {', '.join(p.tags) or '-'}")


@tag.command("rename")
@click.argument("old")
@click.argument("new")
@click.pass_context
def tag_rename(ctx: click.Context, old: str, new: str) -> None:
    with _session(ctx) as g:
        n = g.tags.rename_tag(old, new)
        click.echo(f"Renamed {old!r} to {new!r} on {n} prompt(s)")


@tag.command("merge")
@click.argument("source")
@click.argument("target")
@click.pass_context
def tag_merge(ctx: click.Context, source: str, target: str) -> None:
    with _session(ctx) as g:
        n = g.tags.merge_tags(source, target)
        click.echo(f"Merged {source!r} into {target!r} on {n} prompt(s)")


# ---------------------------------------------------------------------------
# grimoire archive ...
# ---------------------------------------------------------------------------


@cli.group()
def archive() -> None:
    """Soft-deleted prompts."""


@archive.command("list")
@click.pass_context
def archive_list(ctx: click.Context) -> None:
    with _session(ctx) as g:
        items = g.archive.list()
        if not items:
            click.echo("Archive is empty.")
            return
        for a in items:
            click.echo(f"{_fmt_time(a.archived_at)}  {a.id}  {a.name}")


@archive.command("restore")
@click.argument("prompt_id")
@click.pass_context
def archive_restore(ctx: click.Context, prompt_id: str) -> None:
    with _session(ctx) as g:
        p = g.archive.restore(prompt_id)
        click.echo(f"Restored {p.id} ({p.name})")


@archive.command("purge")
@click.option("--older-than", type=int, default=None, help="Only prompts archived more than N days ago")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def archive_purge(ctx: click.Context, older_than: int | None, yes: bool) -> None:
    """Permanently delete archived prompts."""
    cutoff = datetime.now(UTC) - timedelta(days=older_than) if older_than is not None else None
    if not yes:
        click.confirm("Permanently delete archived prompts?", abort=True)
    with _session(ctx) as g:
        n = g.archive.purge(cutoff)
        click.echo(f"Purged {n} archived prompt(s)")


# ---------------------------------------------------------------------------
# Index maintenance
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Bring the index in line with the prompt files."""
    with _session(ctx) as g:
        result = g.indexer.full_sync()
        _echo_sync(result)
        if not result.ok:
            raise SystemExit(1)


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Report drift between prompt files and the index. Exits 1 on drift."""
    with _session(ctx) as g:
        report = g.indexer.check_integrity()
    if report.is_valid:
        click.echo("OK: index matches prompt files")
        return
    sections = (
        ("Not indexed (file on disk, no index row)", report.missing_files),
        ("Orphaned index rows (file gone)", report.orphaned_records),
        ("Changed since indexed (hash mismatch)", report.hash_mismatches),
    )
    for title, paths in sections:
        if paths:
            click.echo(f"{title}:")
            for path in paths:
                click.echo(f"  {path}")
    click.echo("Run `grimoire sync` to repair.")
    raise SystemExit(1)


@cli.command()
@click.pass_context
def reindex(ctx: click.Context) -> None:
    """Drop every index row and rebuild from the prompt files."""
    cfg = _load_cfg(ctx)
    # Remove a 0-byte DB before opening so the rebuild starts fresh
    if cfg.db_path.exists() and cfg.db_path.stat().st_size == 0:
        click.echo(f"Removing empty DB: {cfg.db_path}")
        for f in cfg.db_path.parent.glob(f"{cfg.db_path.name}*"):
            f.unlink(missing_ok=True)
    with _session(ctx) as g:
        result = g.indexer.rebuild()
        _echo_sync(result)
        if not result.ok:
            raise SystemExit(1)


@cli.command()
@click.option("--poll", is_flag=True, help="Use mtime polling instead of inotify")
@click.pass_context
def watch(ctx: click.Context, poll: bool) -> None:
    """Keep the index in sync while prompt files change (Ctrl-C to stop)."""
    from grimoire.watcher import run

    cfg = _load_cfg(ctx)
    _setup_logging(cfg, ctx.obj.get("verbose", False))
    try:
        run(cfg, force_poll=poll)
    except KeyboardInterrupt:
        click.echo("Stopped.")
    except GrimoireError as exc:
        raise click.ClickException(str(exc)) from exc


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
