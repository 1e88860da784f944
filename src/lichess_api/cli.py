from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import httpx
import typer

from .client import LichessClient, LichessHTTPError, login_with_token
from .config import ClientConfig, load_config
from .log import setup_logging
from .paths import find_project_root
from .records import RecordShapeError, Study
from .scaffold import init_config
from .session import TokenStore, personal_token_url, resolve_token, token_store_for
from .stream_parser import NdjsonDecodeError

T = TypeVar("T")

_REQUEST_ERRORS = (
    LichessHTTPError,
    NdjsonDecodeError,
    RecordShapeError,
    json.JSONDecodeError,
    httpx.TransportError,
)

app = typer.Typer(add_completion=False, help="lichess-api: small Lichess.org API client")


@dataclass
class Context:
    root: Path
    cfg: ClientConfig
    store: TokenStore
    token_override: str | None

    def token(self) -> str | None:
        return resolve_token(self.cfg, self.store, explicit=self.token_override)


def _open_client(cfg: ClientConfig, token: str) -> LichessClient:
    return LichessClient.from_config(cfg, token)


def _fail(msg: str) -> typer.Exit:
    typer.secho(msg, fg=typer.colors.RED, err=True)
    return typer.Exit(code=2)


def _run(ctx: Context, call: Callable[[LichessClient], Awaitable[T]], *, token: str | None = None) -> T:
    tok = token or ctx.token()
    if not tok:
        raise _fail("No token: run `lichess-api login --token ...` or set LICHESS_TOKEN")

    async def go() -> T:
        async with _open_client(ctx.cfg, tok) as client:
            return await call(client)

    try:
        return asyncio.run(go())
    except _REQUEST_ERRORS as e:
        raise _fail(f"Request failed: {e}") from e


def _echo_studies(studies: list[Study], *, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps([s.to_dict() for s in studies], ensure_ascii=False, indent=2))
        return
    for s in studies:
        typer.echo(f"{s.id}\t{s.name}")


def _echo_json(obj: Any) -> None:
    typer.echo(json.dumps(obj, ensure_ascii=False, indent=2))


def _read_pgn(path: Path) -> str:
    return path.read_text(encoding="utf-8")


@app.callback()
def main_callback(
    ctx: typer.Context,
    root: Path | None = typer.Option(
        None,
        "--root",
        help="Project root (defaults to auto-detect via lichess.yaml / pyproject.toml)",
    ),
    token: str | None = typer.Option(None, "--token", help="Override the stored token"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    setup_logging(verbose)
    project_root = root.resolve() if root else find_project_root()
    cfg = load_config(project_root)
    store = token_store_for(cfg)
    ctx.obj = Context(root=project_root, cfg=cfg, store=store, token_override=token)


@app.command("init")
def init(
    ctx: typer.Context,
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite existing files"),
) -> None:
    c: Context = ctx.obj
    try:
        result = init_config(root=c.root, overwrite=overwrite)
    except FileExistsError as e:
        raise _fail(f"Refusing to overwrite existing file: {e}") from e

    typer.secho(f"Created config: {result.config_path}", fg=typer.colors.GREEN)
    typer.secho(f"Created env template: {result.dotenv_path}", fg=typer.colors.GREEN)


@app.command()
def login(
    ctx: typer.Context,
    token: str | None = typer.Option(None, "--token", help="Personal access token to store"),
) -> None:
    c: Context = ctx.obj
    if not token:
        typer.echo("Create a personal access token here, then run `lichess-api login --token <token>`:")
        typer.echo(personal_token_url(c.cfg))
        return

    rec = _run(c, lambda client: login_with_token(client, c.store, token), token=token)
    typer.secho(f"Logged in as {rec.username or '<unknown>'}", fg=typer.colors.GREEN)


@app.command()
def logout(ctx: typer.Context) -> None:
    c: Context = ctx.obj
    if c.store.clear():
        typer.secho("Logged out", fg=typer.colors.GREEN)
    else:
        typer.echo("Not logged in")


@app.command()
def whoami(ctx: typer.Context) -> None:
    account = _run(ctx.obj, lambda client: client.get_account())
    _echo_json(account)


@app.command()
def studies(
    ctx: typer.Context,
    username: str | None = typer.Argument(None, help="Study owner (defaults to the logged-in user)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    c: Context = ctx.obj
    if username is None:
        rec = c.store.load()
        username = rec.username if rec is not None else None
    if not username:
        raise _fail("No username given and none stored; pass USERNAME or run `lichess-api login`")

    _echo_studies(_run(c, lambda client: client.list_studies(username)), as_json=as_json)


@app.command()
def broadcasts(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    _echo_studies(_run(ctx.obj, lambda client: client.list_broadcast_rounds()), as_json=as_json)


@app.command("import-pgn")
def import_pgn(
    ctx: typer.Context,
    pgn_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="PGN file"),
) -> None:
    pgn = _read_pgn(pgn_file)
    _echo_json(_run(ctx.obj, lambda client: client.import_pgn(pgn)))


@app.command("import-to-study")
def import_to_study(
    ctx: typer.Context,
    study_id: str = typer.Argument(..., help="Target study id"),
    pgn_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="PGN file"),
    name: str = typer.Option(..., "--name", help="Chapter name"),
) -> None:
    pgn = _read_pgn(pgn_file)
    _run(ctx.obj, lambda client: client.import_pgn_to_study(pgn, name, study_id))
    typer.secho(f"Imported {pgn_file.name} into study {study_id}", fg=typer.colors.GREEN)


@app.command("push-round")
def push_round(
    ctx: typer.Context,
    round_id: str = typer.Argument(..., help="Broadcast round id"),
    pgn_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="PGN file"),
) -> None:
    pgn = _read_pgn(pgn_file)
    _run(ctx.obj, lambda client: client.push_round(pgn, round_id))
    typer.secho(f"Pushed {pgn_file.name} to round {round_id}", fg=typer.colors.GREEN)


def main() -> None:
    # Entry point for console script.
    app()


if __name__ == "__main__":
    main()
