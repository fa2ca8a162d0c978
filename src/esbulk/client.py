"""Minimal Elasticsearch client wrapper used by the bulk loader."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Sequence

import requests

from .config import REQUEST_TIMEOUT, Options
from .http_client import build_session, pick_server, request_with_backoff

logger = logging.getLogger(__name__)


class ESClient:
    """Thin wrapper around the Elasticsearch HTTP API for one target index.

    Calls that concern the whole cluster pick a random server from the pool;
    calls that must hit one particular server take it as an argument.
    """

    def __init__(
        self,
        servers: Sequence[str],
        index: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        max_retries: int = 3,
        timeout: float = REQUEST_TIMEOUT,
        verify_tls: bool = True,
    ) -> None:
        self.servers = tuple(server.rstrip("/") for server in servers)
        self.index = index
        self.max_retries = max_retries
        self.timeout = timeout
        self.verify = bool(verify_tls)
        self.session = build_session(username, password)

    @classmethod
    def from_options(cls, options: Options) -> "ESClient":
        return cls(
            servers=options.servers,
            index=options.index,
            username=options.username,
            password=options.password,
            max_retries=options.max_retries,
            timeout=options.request_timeout,
            verify_tls=options.verify_tls,
        )

    def _url(self, server: Optional[str], path: str = "") -> str:
        base = server.rstrip("/") if server else pick_server(self.servers)
        path = path if not path or path.startswith("/") else f"/{path}"
        return f"{base}{path}"

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return request_with_backoff(
            self.session,
            method,
            url,
            max_retries=self.max_retries,
            timeout=self.timeout,
            verify=self.verify,
            **kwargs,
        )

    def get_index(self, server: Optional[str] = None) -> requests.Response:
        return self.request("GET", self._url(server, self.index))

    def head_index(self, server: Optional[str] = None) -> int:
        response = self.request("HEAD", self._url(server, self.index))
        return response.status_code

    def create_index(self, server: Optional[str] = None) -> requests.Response:
        return self.request("PUT", self._url(server, f"{self.index}/"))

    def delete_index(self, server: Optional[str] = None) -> requests.Response:
        return self.request("DELETE", self._url(server, self.index))

    def put_mapping(self, doc_type: str, body: str, server: Optional[str] = None) -> requests.Response:
        path = f"{self.index}/_mapping/{doc_type}" if doc_type else f"{self.index}/_mapping"
        url = self._url(server, path)
        logger.debug("applying mapping: %s", url)
        return self.request("PUT", url, data=body.encode("utf-8"))

    def get_settings(self, server: str) -> requests.Response:
        return self.request("GET", self._url(server, f"{self.index}/_settings"))

    def put_settings(self, body: Dict[str, Any], server: str) -> requests.Response:
        payload = json.dumps(body)
        response = self.request("PUT", self._url(server, f"{self.index}/_settings"), data=payload)
        logger.debug("applied setting on %s: %s with status %s", server, payload, response.status_code)
        return response

    def flush_index(self, server: str) -> requests.Response:
        return self.request("POST", self._url(server, f"{self.index}/_flush"))

    def bulk(self, payload: str, server: Optional[str] = None) -> requests.Response:
        return self.request("POST", self._url(server, "_bulk"), data=payload.encode("utf-8"))

    def close(self) -> None:
        self.session.close()


__all__ = ["ESClient"]
