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
API for the signed ESIA authorization-code flow.

Example:

```python
from esia.config import Config
from esia.openid import OpenId

esia = OpenId(Config.from_json(Path("esia.json").read_text()))

# Send the user here...
url = esia.build_authorization_url()

# ...and exchange the code the provider redirects back with.
esia.exchange_code_for_token(code)
person = esia.get_person_info()
```
"""

from __future__ import annotations

import json
import logging
import urllib.parse
import uuid
from abc import abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Union

import jwt.utils
from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError

from esia._internal.dispatcher import RequestDispatcher
from esia._internal.http import RequestsTransport, Transport
from esia.config import Config
from esia.errors import (
    CannotGenerateRandom,
    ExpiredToken,
    Forbidden,
    RequestFailed,
    TokenDecodeError,
)
from esia.session import AuthState, Session
from esia.signer import Signer, signer_from_config

_logger = logging.getLogger(__name__)

SUBJECT_ID_CLAIM = "urn:esia:sbj_id"
TIMESTAMP_FORMAT = "%Y.%m.%d %H:%M:%S %z"

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}

Collection = Union[Dict[str, Any], List[Dict[str, Any]]]


class _TokenResponse(BaseModel):
    """
    The subset of the token endpoint's response this client relies on.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: StrictStr
    refresh_token: StrictStr


def _timestamp() -> str:
    """
    The current local time, in the provider's `YYYY.MM.DD HH:MM:SS +HHMM`
    format.
    """
    return datetime.now().astimezone().strftime(TIMESTAMP_FORMAT)


def _build_state() -> str:
    """
    A fresh UUID v4, drawn from the operating system's secure random source.
    """
    try:
        return str(uuid.uuid4())
    except (OSError, NotImplementedError) as exc:
        raise CannotGenerateRandom("cannot generate a random state") from exc


def _unverified_subject_id(token: str) -> str:
    """
    Read the subject id out of an access token's payload segment.

    NOTE: The token's signature is deliberately not verified here. The token
    comes straight from the provider's token endpoint over the channel we
    just authenticated, and the subject id is only used to address the
    provider's own resource endpoints.
    """
    chunks = token.split(".")
    if len(chunks) != 3:
        raise TokenDecodeError(
            f"access token has {len(chunks)} segments, expected 3"
        )

    try:
        payload = json.loads(jwt.utils.base64url_decode(chunks[1]))
    except (ValueError, TypeError) as exc:
        raise TokenDecodeError("access token payload is not base64url JSON") from exc

    if not isinstance(payload, dict):
        raise TokenDecodeError("access token payload is not a JSON object")

    try:
        return str(payload[SUBJECT_ID_CLAIM])
    except KeyError:
        raise TokenDecodeError(
            f"access token payload is missing the {SUBJECT_ID_CLAIM!r} claim"
        )


class Client(Protocol):
    """
    A protocol type describing the interface that `OpenId` and its offline
    stand-in, `esia.testing.FakeOpenId`, both conform to.
    """

    @property
    @abstractmethod
    def state(self) -> AuthState:
        raise NotImplementedError  # pragma: no cover

    @property
    @abstractmethod
    def oid(self) -> Optional[str]:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_resource_token(self) -> Optional[str]:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_refresh_token(self) -> Optional[str]:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def set_tokens(
        self, access_token: str, refresh_token: str, oid: Optional[str] = None
    ) -> None:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def set_refresh_token(self, refresh_token: str) -> None:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def build_authorization_url(self) -> str:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def build_logout_url(self, redirect_url: Optional[str] = None) -> str:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def exchange_code_for_token(self, code: str) -> str:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def refresh_token(self) -> str:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_person_info(self) -> Dict[str, Any]:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_contact_info(self) -> Collection:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_address_info(self) -> Collection:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_doc_info(self) -> Collection:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_org_info(self) -> Dict[str, Any]:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_org_info_full(self, org_oid: str) -> Dict[str, Any]:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_org_contacts(self, org_oid: str) -> Dict[str, Any]:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_org_addresses(self, org_oid: str) -> Dict[str, Any]:
        raise NotImplementedError  # pragma: no cover

    @abstractmethod
    def get_org_employees(self, org_oid: str) -> Dict[str, Any]:
        raise NotImplementedError  # pragma: no cover


class OpenId(Client):
    """
    A client for one ESIA authorization flow.

    Session state (tokens and subject id) lives on the instance; use one
    `OpenId` per user flow.
    """

    def __init__(
        self,
        config: Config,
        signer: Optional[Signer] = None,
        transport: Optional[Transport] = None,
    ) -> None:
        """
        Create a new `OpenId` client.

        `signer` defaults to the strategy selected by `config.signer`, and
        `transport` to a `requests`-backed one using `config.timeout`.
        """
        self._config = config
        self._signer = signer if signer is not None else signer_from_config(config)
        self._transport = (
            transport
            if transport is not None
            else RequestsTransport(timeout=config.timeout)
        )
        self._session = Session()
        self._dispatcher = RequestDispatcher(self._transport, self._session)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def state(self) -> AuthState:
        """
        Where this client is in the authorization flow.
        """
        return self._session.state

    @property
    def oid(self) -> Optional[str]:
        """
        The authenticated subject's id, known after a code exchange.
        """
        return self._session.oid

    def get_resource_token(self) -> Optional[str]:
        return self._session.access_token

    def get_refresh_token(self) -> Optional[str]:
        return self._session.refresh_token

    def set_tokens(
        self, access_token: str, refresh_token: str, oid: Optional[str] = None
    ) -> None:
        """
        Restore a session the caller persisted earlier.
        """
        self._session.update(access_token, refresh_token)
        if oid is not None:
            self._session.oid = oid

    def set_refresh_token(self, refresh_token: str) -> None:
        """
        Store only a refresh token, e.g. one persisted from an earlier flow.

        The client stays unauthenticated until `refresh_token()` succeeds.
        """
        self._session.restore_refresh_token(refresh_token)

    def _client_secret(self) -> Dict[str, str]:
        """
        Generate a timestamp and state, and sign the canonical message built
        from them. Called once per outbound request; neither value is ever
        reused.
        """
        timestamp = _timestamp()
        state = _build_state()
        message = (
            f"{self._config.scope_string}{timestamp}{self._config.client_id}{state}"
        )

        return {
            "timestamp": timestamp,
            "state": state,
            "client_secret": self._signer.sign(message),
        }

    def build_authorization_url(self) -> str:
        """
        Returns the URL to send the user to for authentication.

        Raises `esia.errors.SignFailed` if the request cannot be signed.
        """
        signed = self._client_secret()

        params = {
            "client_id": self._config.client_id,
            "client_secret": signed["client_secret"],
            "redirect_uri": self._config.redirect_url,
            "scope": self._config.scope_string,
            "response_type": self._config.response_type,
            "state": signed["state"],
            "access_type": self._config.access_type,
            "timestamp": signed["timestamp"],
        }

        return f"{self._config.code_url}?{urllib.parse.urlencode(params)}"

    def build_logout_url(self, redirect_url: Optional[str] = None) -> str:
        """
        Returns the URL that ends the user's session at the provider.
        """
        params = {"client_id": self._config.client_id}
        if redirect_url:
            params["redirect_url"] = redirect_url

        return f"{self._config.logout_url}?{urllib.parse.urlencode(params)}"

    def _request_token(
        self, grant_type: str, code: str, refresh_token: Optional[str]
    ) -> _TokenResponse:
        signed = self._client_secret()
        if refresh_token is None:
            # The first exchange has no refresh token yet, but the provider
            # expects the field anyway: the request's state fills it.
            refresh_token = signed["state"]

        body = {
            "client_id": self._config.client_id,
            "code": code,
            "grant_type": grant_type,
            "client_secret": signed["client_secret"],
            "state": signed["state"],
            "redirect_uri": self._config.redirect_url,
            "scope": self._config.scope_string,
            "timestamp": signed["timestamp"],
            "token_type": "Bearer",
            "refresh_token": refresh_token,
        }

        _logger.debug(f"requesting token: grant_type={grant_type}")
        payload = self._dispatcher.send(
            "POST",
            self._config.token_url,
            headers=_FORM_HEADERS,
            body=urllib.parse.urlencode(body).encode(),
        )

        try:
            return _TokenResponse.model_validate(payload)
        except ValidationError as exc:
            raise TokenDecodeError("token response is missing tokens") from exc

    def exchange_code_for_token(self, code: str) -> str:
        """
        Exchange the authorization `code` for an access token.

        On success the access token, refresh token and subject id are stored
        on this client and the access token is returned. Nothing is stored
        unless the whole response could be parsed.
        """
        tokens = self._request_token("authorization_code", code, None)
        oid = _unverified_subject_id(tokens.access_token)

        self._session.update(tokens.access_token, tokens.refresh_token)
        self._session.oid = oid
        _logger.debug(f"authenticated subject {oid}")

        return tokens.access_token

    def refresh_token(self) -> str:
        """
        Exchange the stored refresh token for a new token pair.

        The subject id is left as is. If the provider rejects the refresh
        token, the session is cleared.
        """
        refresh = self._session.refresh_token
        if not refresh:
            raise ExpiredToken("no refresh token available")

        try:
            tokens = self._request_token("refresh_token", refresh, refresh)
        except (ExpiredToken, Forbidden):
            _logger.debug("refresh token rejected; clearing session")
            self._session.clear()
            raise

        self._session.update(tokens.access_token, tokens.refresh_token)

        return tokens.access_token

    def _get(self, url: str) -> Dict[str, Any]:
        return self._dispatcher.send("GET", url)

    def _collect_elements(self, payload: Dict[str, Any]) -> Collection:
        """
        Expand a collection response into its elements.

        Collections come back as `{"size": N, "elements": [url, ...]}`; each
        element URL is fetched in order, stopping at the first failure.
        A payload without a positive `size` is returned unchanged; a
        malformed `size` or `elements` raises `RequestFailed`.
        """
        size = payload.get("size", 0)
        # bool is an int subclass, but never a valid size.
        if isinstance(size, bool) or not isinstance(size, int):
            raise RequestFailed(f"malformed collection: size is {size!r}")
        if size <= 0:
            return payload

        elements = payload.get("elements", [])
        if not isinstance(elements, list) or not all(
            isinstance(url, str) for url in elements
        ):
            raise RequestFailed("malformed collection: elements is not a list of URLs")

        result = []
        for element_url in elements:
            element = self._get(element_url)
            if element:
                result.append(element)

        return result

    def get_person_info(self) -> Dict[str, Any]:
        """
        Fetch the authenticated person's profile.
        """
        return self._get(self._config.person_url(self.oid))

    def get_contact_info(self) -> Collection:
        return self._collect_elements(
            self._get(f"{self._config.person_url(self.oid)}/ctts")
        )

    def get_address_info(self) -> Collection:
        return self._collect_elements(
            self._get(f"{self._config.person_url(self.oid)}/addrs")
        )

    def get_doc_info(self) -> Collection:
        return self._collect_elements(
            self._get(f"{self._config.person_url(self.oid)}/docs")
        )

    def get_org_info(self) -> Dict[str, Any]:
        """
        Fetch the organizations the authenticated person has roles in.
        """
        return self._get(f"{self._config.person_url(self.oid)}/roles")

    def get_org_info_full(self, org_oid: str) -> Dict[str, Any]:
        """
        Fetch an organization's general details (INN, KPP, type, name, ...).
        """
        return self._get(self._config.org_url(org_oid))

    def get_org_contacts(self, org_oid: str) -> Dict[str, Any]:
        return self._get(f"{self._config.org_url(org_oid)}/ctts?embed=(elements)")

    def get_org_addresses(self, org_oid: str) -> Dict[str, Any]:
        return self._get(f"{self._config.org_url(org_oid)}/addrs?embed=(elements)")

    def get_org_employees(self, org_oid: str) -> Dict[str, Any]:
        return self._get(
            f"{self._config.org_url(org_oid)}/emps?embed=(elements.person)"
        )
