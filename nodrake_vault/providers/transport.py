"""
HTTP transport used by provider adapters.

Adapters talk to providers only through ``HttpTransport`` so tests can swap in
a scripted transport. ``RequestsTransport`` is the production implementation.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple

import requests
from pydantic import BaseModel, Field

from ..exceptions import ErrorCode, ExternalServiceError


class HttpResponse(BaseModel):
    """Status, headers and body of a completed HTTP exchange."""

    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        """
        Decode the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON
        """
        return json.loads(self.text) if self.text else {}


class TransportError(ExternalServiceError):
    """The request never produced a response: timeout, DNS, connection reset, TLS."""

    def __init__(self, url: str, timed_out: bool, cause: Optional[Exception] = None):
        self.timed_out = timed_out
        super().__init__(
            "Provider request timed out" if timed_out else "Provider request failed",
            service_name=url.split("/")[2] if "://" in url else url,
            error_code=ErrorCode.TIMEOUT_ERROR if timed_out else ErrorCode.CONNECTION_ERROR,
            status_code=503,
            cause=cause,
            timed_out=timed_out,
        )


class HttpTransport(ABC):
    @abstractmethod
    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        data: Optional[Mapping[str, str]] = None,
        json_body: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
        timeout: float,
    ) -> HttpResponse:
        """
        Send a request and return the response, whatever its status.

        Raises:
            TransportError: If no response was received
        """


class RequestsTransport(HttpTransport):
    """HttpTransport over a pooled ``requests.Session``."""

    def __init__(self, session: Optional[requests.Session] = None, user_agent: str = "nodrake-vault"):
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", user_agent)

    def request(
        self,
        method: str,
        url: str,
        *,
        params=None,
        data=None,
        json_body=None,
        headers=None,
        auth=None,
        timeout: float,
    ) -> HttpResponse:
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=data,
                json=json_body,
                headers=dict(headers or {}),
                auth=auth,
                timeout=timeout,
                allow_redirects=False,
            )
        except requests.Timeout as e:
            raise TransportError(url, timed_out=True, cause=e) from e
        except requests.RequestException as e:
            raise TransportError(url, timed_out=False, cause=e) from e

        return HttpResponse(
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            text=response.text,
        )

    def close(self) -> None:
        self.session.close()
