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
Client configuration for the ESIA identity provider.

Example:

```python
from esia.config import Config

config = Config.from_json(Path("esia.json").read_text())
print(config.code_url)
```
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    StrictBool,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from esia.errors import InvalidConfiguration

DEFAULT_PORTAL_URL = "http://esia-portal1.test.gosuslugi.ru/"
DEFAULT_SCOPE = ["fullname", "birthdate", "gender", "email"]


class SignerKind(str, Enum):
    """
    The signing strategies a `Config` can select.
    """

    PKCS7 = "pkcs7"
    """
    In-process signing with a certificate and private key on disk.
    """

    CRYPTOPRO = "cryptopro"
    """
    Signing delegated to CryptoPro's `cryptcp` against a certificate store.
    """


class Config(BaseModel):
    """
    Immutable client configuration.

    Owned by the caller; the protocol code only ever reads it.

    Construct it with `Config.build` or `Config.from_json`, which report
    invalid settings as `esia.errors.InvalidConfiguration`. Calling the
    model directly raises `pydantic.ValidationError` instead.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    client_id: StrictStr
    redirect_url: StrictStr
    portal_url: StrictStr = DEFAULT_PORTAL_URL
    code_url_path: StrictStr = "aas/oauth2/ac"
    token_url_path: StrictStr = "aas/oauth2/te"
    logout_url_path: StrictStr = "idp/ext/Logout"
    person_url_path: StrictStr = "rs/prns"
    org_url_path: StrictStr = "rs/orgs"
    scope: List[StrictStr] = DEFAULT_SCOPE
    response_type: StrictStr = "code"
    access_type: StrictStr = "offline"

    signer: SignerKind = SignerKind.PKCS7
    cert_path: Optional[StrictStr] = None
    private_key_path: Optional[StrictStr] = None
    private_key_password: Optional[StrictStr] = None
    crypto_path: Optional[StrictStr] = None
    thumbprint: Optional[StrictStr] = None
    pin: Optional[StrictStr] = None
    keep_temp: StrictBool = False
    tmp_path: StrictStr = "/tmp"

    timeout: float = 30.0

    @field_validator("client_id", "redirect_url")
    def _not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("portal_url")
    def _trailing_slash(cls, v: str) -> str:
        # Paths are appended directly, so the base must end in a slash.
        if not v.endswith("/"):
            v = f"{v}/"
        return v

    @field_validator("scope")
    def _scope_not_empty(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one scope is required")
        return v

    @model_validator(mode="after")
    def _signer_material(self) -> Config:
        if self.signer == SignerKind.PKCS7:
            required = ("cert_path", "private_key_path")
        else:
            required = ("crypto_path", "thumbprint", "pin")

        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(
                f"signer {self.signer.value!r} requires: {', '.join(missing)}"
            )
        return self

    @classmethod
    def from_json(cls, raw: str | bytes) -> Config:
        """
        Load a `Config` from the given JSON document.
        """
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise InvalidConfiguration("could not load configuration") from exc

    @classmethod
    def build(cls, **kwargs: Any) -> Config:
        """
        Construct a `Config`, reporting validation problems as
        `InvalidConfiguration` instead of `pydantic`'s own error type.
        """
        try:
            return cls(**kwargs)
        except ValidationError as exc:
            raise InvalidConfiguration("could not build configuration") from exc

    @property
    def scope_string(self) -> str:
        """
        The space-separated scope string, as signed and sent to the provider.
        """
        return " ".join(self.scope)

    @property
    def code_url(self) -> str:
        return f"{self.portal_url}{self.code_url_path}"

    @property
    def token_url(self) -> str:
        return f"{self.portal_url}{self.token_url_path}"

    @property
    def logout_url(self) -> str:
        return f"{self.portal_url}{self.logout_url_path}"

    def person_url(self, oid: Optional[str]) -> str:
        """
        Returns the profile URL for the person identified by `oid`.

        Raises `InvalidConfiguration` if no `oid` is known yet, i.e. before a
        successful code exchange.
        """
        if not oid:
            raise InvalidConfiguration("no oid available; exchange a code first")
        return f"{self.portal_url}{self.person_url_path}/{oid}"

    def org_url(self, org_oid: str) -> str:
        """
        Returns the profile URL for the organization identified by `org_oid`.
        """
        if not org_oid:
            raise InvalidConfiguration("an organization oid is required")
        return f"{self.portal_url}{self.org_url_path}/{org_oid}"
