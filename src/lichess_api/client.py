from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_HOST, ClientConfig
from .records import Study, extract_username, study_from_broadcast_round, study_from_record
from .session import TokenRecord, TokenStore
from .stream_parser import IterableSource, read_stream

logger = logging.getLogger(__name__)


class LichessHTTPError(RuntimeError):
    def __init__(self, status_code: int, reason: str, *, path: str):
        super().__init__(f"{status_code} {reason}")
        self.status_code = status_code
        self.reason = reason
        self.path = path


def _check(resp: httpx.Response, path: str) -> None:
    if resp.is_success:
        return
    err = LichessHTTPError(resp.status_code, resp.reason_phrase, path=path)
    logger.error("%s %s failed: %s", resp.request.method, path, err)
    raise err


def _json_or_empty(resp: httpx.Response) -> Any:
    if not resp.content:
        return {}
    return resp.json()


class LichessClient:
    """Async client for the handful of Lichess endpoints this tool needs."""

    def __init__(
        self,
        token: str,
        *,
        host: str = DEFAULT_HOST,
        timeout_s: float = 30.0,
        user_agent: str = "lichess-api/0.1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._host = host.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self._host,
            headers={"Authorization": f"Bearer {token}", "User-Agent": user_agent},
            timeout=timeout_s,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, cfg: ClientConfig, token: str, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "LichessClient":
        return cls(token, host=cfg.host, timeout_s=cfg.timeout_s, user_agent=cfg.user_agent, transport=transport)

    @property
    def host(self) -> str:
        return self._host

    async def __aenter__(self) -> "LichessClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        logger.debug("%s %s", method, path)
        resp = await self._http.request(method, path, **kwargs)
        _check(resp, path)
        return resp

    async def stream_records(
        self,
        path: str,
        process: Callable[[Any], Awaitable[Any] | Any],
        *,
        cancel: asyncio.Event | None = None,
    ) -> int:
        """GET an NDJSON endpoint and feed each record to `process` as it arrives."""

        logger.debug("GET %s (ndjson)", path)
        async with self._http.stream("GET", path, headers={"Accept": "application/x-ndjson"}) as resp:
            _check(resp, path)
            source = IterableSource(resp.aiter_bytes())
            n = await read_stream(source, process, cancel=cancel)
            if source.truncated:
                logger.warning("%s: connection dropped after %d records", path, n)
        return n

    async def _collect(self, path: str, shape: Callable[[Any], Study]) -> list[Study]:
        studies: list[Study] = []
        await self.stream_records(path, lambda obj: studies.append(shape(obj)))
        return studies

    async def get_account(self) -> dict[str, Any]:
        resp = await self._request("GET", "/api/account")
        return resp.json()

    async def list_studies(self, username: str) -> list[Study]:
        return await self._collect(f"/api/study/by/{quote(username, safe='')}", study_from_record)

    async def list_broadcast_rounds(self) -> list[Study]:
        return await self._collect("/api/broadcast/my-rounds", study_from_broadcast_round)

    async def import_pgn(self, pgn: str) -> Any:
        resp = await self._request("POST", "/api/import", data={"pgn": pgn})
        return _json_or_empty(resp)

    async def import_pgn_to_study(self, pgn: str, name: str, study_id: str) -> Any:
        resp = await self._request(
            "POST",
            f"/api/study/{quote(study_id, safe='')}/import-pgn",
            data={"pgn": pgn, "name": name},
        )
        return _json_or_empty(resp)

    async def push_round(self, pgn: str, round_id: str) -> Any:
        resp = await self._request(
            "POST",
            f"/api/broadcast/round/{quote(round_id, safe='')}/push",
            content=pgn.encode("utf-8"),
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )
        return _json_or_empty(resp)


async def login_with_token(client: LichessClient, store: TokenStore, token: str) -> TokenRecord:
    """Check `token` against /api/account and persist it with the account's username."""

    account = await client.get_account()
    username = extract_username(account)
    if username is None:
        logger.warning("account response has no username")

    rec = TokenRecord(token=token, host=client.host, username=username)
    store.save(rec)
    logger.info("logged in as %s", username or "<unknown>")
    return rec
