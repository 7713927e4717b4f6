"""Cliente HTTP base (httpx) para a API REST da loja."""
from __future__ import annotations
from typing import Any
import httpx
from kink import di
from ..core.settings import Settings
from ..domain.errors import RemoteSyncFailed


def wire_id(value: str) -> int | str:
    """IDs numéricos vão como inteiro no JSON (formato do backend)."""
    return int(value) if value.isdigit() else value


def error_detail(r: httpx.Response) -> str:
    ctype = r.headers.get("content-type", "")
    if "application/json" in ctype:
        try:
            j = r.json()
        except ValueError:
            return r.text[:200]
        if isinstance(j, dict):
            return str(j.get("detail") or j.get("error") or j)
        return str(j)
    return r.text[:200]


class ApiClient:
    """Chamada com timeout limitado; qualquer não-2xx, erro de rede ou timeout vira RemoteSyncFailed."""

    def __init__(self, token: str | None = None, settings: Settings | None = None,
                 transport: httpx.BaseTransport | None = None):
        self.s = settings or di[Settings]
        self.token = token
        self.transport = transport

    def _client(self) -> httpx.Client:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.Client(base_url=self.s.api_base_url, timeout=self.s.api_timeout_s,
                            headers=headers, transport=self.transport)

    def _call(self, operation: str, method: str, url: str, *, payload: dict[str, Any] | None = None,
              json_body: Any = None, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            with self._client() as cli:
                r = cli.request(method, url, json=json_body, params=params)
        except httpx.TimeoutException as exc:
            raise RemoteSyncFailed(operation, payload, detail=f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise RemoteSyncFailed(operation, payload, detail=str(exc)) from exc
        if r.status_code // 100 != 2:
            raise RemoteSyncFailed(operation, payload, status_code=r.status_code, detail=error_detail(r))
        return r

    @staticmethod
    def _json(r: httpx.Response, operation: str, payload: dict[str, Any] | None = None) -> Any:
        """Corpo JSON de uma resposta 2xx; corpo vazio ou não-JSON vira RemoteSyncFailed."""
        try:
            return r.json()
        except ValueError as exc:
            raise RemoteSyncFailed(operation, payload, status_code=r.status_code,
                                   detail=f"resposta não-JSON: {r.text[:200]!r}") from exc
