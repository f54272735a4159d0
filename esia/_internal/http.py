# Copyright 2022 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
HTTP transport for esia-python.

The protocol code only needs to send a request and read the whole response
body back, so the transport is a small swappable interface with a
`requests`-backed default.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Mapping, Optional

import requests

from esia._internal import USER_AGENT

_logger = logging.getLogger(__name__)


class TransportError(Exception):
    """
    Raised when a request cannot be completed.

    `status` is the HTTP status code when the provider did answer, and
    `None` for connection-level failures.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        """Create a new `TransportError`."""
        self.status = status
        super().__init__(message)


class HTTPError(TransportError):
    """
    Represents an HTTP error response.
    """

    def __init__(self, status: int, reason: str, body: Optional[bytes] = None):
        """
        Create a new HTTPError.

        Args:
            status: HTTP status code
            reason: HTTP status reason phrase
            body: Optional response body
        """
        self.reason = reason
        self.body = body
        super().__init__(f"HTTP {status}: {reason}", status=status)


class HTTPResponse:
    """
    A fully read HTTP response.
    """

    def __init__(self, status_code: int, reason: str, content: bytes):
        self.status_code = status_code
        self.reason = reason
        self.content = content

    def raise_for_status(self) -> None:
        """
        Raise an HTTPError if the response status indicates an error.

        Raises:
            HTTPError: If status code is 4xx or 5xx
        """
        if 400 <= self.status_code < 600:
            raise HTTPError(self.status_code, self.reason or "", self.content)

    @property
    def text(self) -> str:
        """
        Get the response body as text.

        Returns:
            The response body decoded as UTF-8
        """
        return self.content.decode("utf-8")


class Transport(ABC):
    """
    Performs the actual network call on behalf of the request dispatcher.
    """

    @abstractmethod
    def send_request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[bytes] = None,
    ) -> HTTPResponse:
        """
        Send a request and return the fully read response.

        Raises `TransportError` (or its `HTTPError` subclass for 4xx/5xx
        answers) when no successful response was received.
        """
        raise NotImplementedError


class RequestsTransport(Transport):
    """
    The default `Transport`, backed by a `requests.Session`.
    """

    def __init__(
        self, session: Optional[requests.Session] = None, timeout: float = 30.0
    ) -> None:
        """
        Create a new `RequestsTransport`.

        `timeout` applies to both connecting and reading, in seconds.
        """
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": USER_AGENT})

        self.session = session
        self.timeout = timeout

    def __del__(self) -> None:
        """
        Destroys the underlying network session.
        """
        session = getattr(self, "session", None)
        if session is not None:
            session.close()

    def send_request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[bytes] = None,
    ) -> HTTPResponse:
        _logger.debug(f"{method} {url}")
        try:
            resp: requests.Response = self.session.request(
                method,
                url,
                headers=dict(headers),
                data=body,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        response = HTTPResponse(resp.status_code, resp.reason or "", resp.content)
        response.raise_for_status()
        return response
