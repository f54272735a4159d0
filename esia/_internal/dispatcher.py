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
Sends requests over a `Transport` on behalf of a session, and maps failures
onto the esia error types.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from esia._internal.http import Transport, TransportError
from esia.errors import ExpiredToken, Forbidden, RequestFailed
from esia.session import AuthState, Session

_logger = logging.getLogger(__name__)


class RequestDispatcher:
    """
    Attaches the session's bearer token to outgoing requests, decodes JSON
    response bodies, and classifies failures.
    """

    def __init__(self, transport: Transport, session: Session) -> None:
        self._transport = transport
        self._session = session

    def send(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and return its body as a JSON object.

        Failures are classified in this order:

        1. a transport failure with HTTP status 403 is `Forbidden`;
        2. a transport failure with HTTP status 401 is `ExpiredToken`;
        3. any other transport failure is `RequestFailed`;
        4. a body that is not a JSON object is `RequestFailed`.

        The original exception is always kept as the `__cause__`. Nothing
        is retried here; on `ExpiredToken` the caller is expected to refresh
        and try again.
        """
        request_headers = dict(headers or {})
        if self._session.access_token:
            request_headers["Authorization"] = f"Bearer {self._session.access_token}"

        try:
            response = self._transport.send_request(method, url, request_headers, body)
        except TransportError as exc:
            _logger.error(f"request to {url} failed: {exc}")
            if exc.status == 403:
                raise Forbidden("request is forbidden") from exc
            if exc.status == 401:
                # Only a rejected bearer token makes the session stale.
                if self._session.access_token:
                    self._session.state = AuthState.EXPIRED
                raise ExpiredToken("token possibly expired and needs a refresh") from exc
            raise RequestFailed("request failed") from exc

        try:
            payload = json.loads(response.text)
        except (UnicodeDecodeError, ValueError) as exc:
            _logger.error(f"cannot decode response body from {url}: {exc}")
            raise RequestFailed("cannot decode response body") from exc

        if not isinstance(payload, dict):
            _logger.error(f"response body from {url} is not a JSON object")
            raise RequestFailed(
                f"response body is not a JSON object: {type(payload).__name__}"
            )

        return payload
