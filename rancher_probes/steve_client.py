"""
HTTP client for the Rancher Steve API.

Builds filter/sort/limit query strings, authenticates with an API token and validates
that responses are Steve collections before callers count or compare their items.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

import requests
import urllib3

JsonObject = Dict[str, Any]


class SteveApiError(Exception):
    """Raised when a Steve response cannot be interpreted as a collection or object."""


def normalize_host(url: str) -> str:
    """Strip the scheme and trailing slash: "https://rancher.test/" -> "rancher.test"."""
    url = url.rstrip("/")
    for scheme in ("http://", "https://"):
        if url.startswith(scheme):
            url = url[len(scheme) :]
    return url


def build_query(
    filters: Iterable[Sequence[str]] = (),
    sort: Optional[str] = None,
    limit: Optional[int] = None,
    projects_or_namespaces: Optional[str] = None,
) -> str:
    """
    Build a Steve query string.

    Each element of `filters` is one `filter=` parameter whose terms are ORed (joined by
    commas); separate `filter=` parameters are ANDed by the server. Values are emitted
    verbatim so the URL stays readable in reproduction hints.

    >>> build_query([["id=ns/a", "id=ns/b"], ["metadata.state.name=running"]], limit=2)
    '?filter=id=ns/a,id=ns/b&filter=metadata.state.name=running&limit=2'
    """
    params = [f"filter={','.join(group)}" for group in filters]
    if sort:
        params.append(f"sort={sort}")
    if limit is not None:
        params.append(f"limit={int(limit)}")
    if projects_or_namespaces:
        params.append(f"projectsornamespaces={projects_or_namespaces}")
    return "?" + "&".join(params) if params else ""


@dataclass(frozen=True)
class SteveClientConfig:
    base_url: str
    verify: bool = False
    timeout_seconds: float = 30.0


class SteveClient:
    """
    Synchronous client for the Rancher Steve API (`/v1/<type>`).

    A token of the form "<access-key>:<secret-key>" is sent as basic auth, anything else
    as a bearer token.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        session: Optional[requests.Session] = None,
        verify: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self._config = SteveClientConfig(
            base_url=f"https://{normalize_host(base_url)}",
            verify=verify,
            timeout_seconds=float(timeout),
        )
        self._token = token
        self._headers: Dict[str, str] = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if ":" in token:
            username, password = token.split(":", 1)
            self._auth: Optional[tuple] = (username, password)
        else:
            self._auth = None
            self._headers["Authorization"] = f"Bearer {token}"

        self._session = session or requests.Session()
        self._owns_session = session is None

        if not verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    @property
    def base_url(self) -> str:
        return self._config.base_url

    def close(self) -> None:
        """Close the underlying session if it was created by this instance."""
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "SteveClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def url(self, resource: str, query: str = "") -> str:
        return f"{self._config.base_url}/v1/{resource}{query}"

    def curl_command(self, url: str) -> str:
        """Equivalent curl invocation, printed so a check can be reproduced by hand."""
        if self._auth is not None:
            auth = f'-u "{self._token}"'
        else:
            auth = f"-H 'Authorization: Bearer {self._token}'"
        return (
            f"curl -sk {auth} -H 'Accept: application/json' "
            f"-H 'Content-Type: application/json' \"{url}\""
        )

    def _get_json(self, url: str) -> Any:
        resp = self._session.get(
            url,
            headers=self._headers,
            auth=self._auth,
            verify=self._config.verify,
            timeout=self._config.timeout_seconds,
        )
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as e:
            raise SteveApiError(f"Response from {url} is not JSON: {resp.text[:200]}") from e

    def list(self, resource: str, query: str = "") -> JsonObject:
        """
        List a collection.

        Raises:
            requests.RequestException: On transport or HTTP errors
            SteveApiError: If the body is not a collection with a `data` array
        """
        url = self.url(resource, query)
        body = self._get_json(url)
        if not isinstance(body, dict) or not isinstance(body.get("data"), list):
            raise SteveApiError(f"Response from {url} has no data array: {str(body)[:200]}")
        return body

    def get(self, resource: str, object_id: str) -> JsonObject:
        url = f"{self.url(resource)}/{object_id}"
        body = self._get_json(url)
        if not isinstance(body, dict):
            raise SteveApiError(f"Response from {url} is not an object: {str(body)[:200]}")
        return body
