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
A stand-in for `esia.openid.OpenId` that serves canned data.

Use it wherever an application would otherwise talk to a real provider,
e.g. in its own test suite or in a local demo environment:

```python
from esia.testing import FakeOpenId

esia = FakeOpenId(
    {
        "token": "access",
        "refresh": "refresh",
        "person": {"firstName": "Ivan"},
    }
)
```

Nothing is signed and no requests are made.
"""

from __future__ import annotations

import urllib.parse
from typing import Any, Dict, Mapping, Optional

from esia.openid import Client, Collection
from esia.session import AuthState, Session

FAKE_PORTAL_URL = "https://esia.example.invalid/"


class FakeOpenId(Client):
    """
    Implements the `esia.openid.Client` interface, backed by a mapping of
    canned responses. Recognised keys: `token`, `refresh`, `oid`, `person`,
    `contacts`, `addresses`, `docs`, `orgs`.
    """

    def __init__(self, data: Mapping[str, Any], client_id: str = "fake") -> None:
        self._data = dict(data)
        self._client_id = client_id
        self._session = Session()

    @property
    def state(self) -> AuthState:
        return self._session.state

    @property
    def oid(self) -> Optional[str]:
        return self._session.oid

    def get_resource_token(self) -> Optional[str]:
        return self._session.access_token

    def get_refresh_token(self) -> Optional[str]:
        return self._session.refresh_token

    def set_tokens(
        self, access_token: str, refresh_token: str, oid: Optional[str] = None
    ) -> None:
        self._session.update(access_token, refresh_token)
        if oid is not None:
            self._session.oid = oid

    def set_refresh_token(self, refresh_token: str) -> None:
        self._session.restore_refresh_token(refresh_token)

    def build_authorization_url(self) -> str:
        params = {"client_id": self._client_id, "state": "fake"}
        return f"{FAKE_PORTAL_URL}aas/oauth2/ac?{urllib.parse.urlencode(params)}"

    def build_logout_url(self, redirect_url: Optional[str] = None) -> str:
        params = {"client_id": self._client_id}
        if redirect_url:
            params["redirect_url"] = redirect_url
        return f"{FAKE_PORTAL_URL}idp/ext/Logout?{urllib.parse.urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> str:
        token = self._data.get("token", "")
        self._session.update(token, self._data.get("refresh", ""))
        self._session.oid = self._data.get("oid")
        return token

    def refresh_token(self) -> str:
        token = self._data.get("token", "")
        self._session.update(token, self._data.get("refresh", ""))
        return token

    def get_person_info(self) -> Dict[str, Any]:
        return self._data.get("person", {})

    def get_contact_info(self) -> Collection:
        return self._data.get("contacts", [])

    def get_address_info(self) -> Collection:
        return self._data.get("addresses", [])

    def get_doc_info(self) -> Collection:
        return self._data.get("docs", [])

    def get_org_info(self) -> Dict[str, Any]:
        return self._data.get("orgs", {})

    def get_org_info_full(self, org_oid: str) -> Dict[str, Any]:
        """
        Returns the `inn` and `kpp` of the matching entry in
        `orgs["elements"]`, or an empty dict if there is none.
        """
        for element in self._data.get("orgs", {}).get("elements", []):
            if str(element.get("oid")) == str(org_oid):
                return {
                    "inn": element.get("inn", ""),
                    "kpp": element.get("kpp", ""),
                }
        return {}

    def get_org_contacts(self, org_oid: str) -> Dict[str, Any]:
        return {"size": 0, "elements": []}

    def get_org_addresses(self, org_oid: str) -> Dict[str, Any]:
        return {"size": 0, "elements": []}

    def get_org_employees(self, org_oid: str) -> Dict[str, Any]:
        return {"size": 0, "elements": []}
