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
Signing strategies.

ESIA does not use a static client secret: every authorization and token
request carries a detached signature over a canonical message instead.
A `Signer` produces that signature; which one is used is decided once, at
construction time, from the client configuration.

Example:

```python
from esia.config import Config
from esia.signer import signer_from_config

signer = signer_from_config(config)
client_secret = signer.sign(message)
```
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Union

from esia.errors import InvalidConfiguration

if TYPE_CHECKING:
    from esia.config import Config

Message = Union[str, bytes]


def urlsafe_signature(signature: bytes) -> str:
    """
    Encodes a raw signature the way the provider expects it in a
    `client_secret`: base64, with `+` and `/` replaced by `-` and `_`, and
    without `=` padding.
    """
    return base64.urlsafe_b64encode(signature).rstrip(b"=").decode()


def _message_bytes(message: Message) -> bytes:
    if isinstance(message, str):
        return message.encode("utf-8")
    return message


class Signer(ABC):
    """
    The signing capability: a detached signature over arbitrary bytes.
    """

    @abstractmethod
    def sign(self, message: Message) -> str:
        """
        Sign `message` exactly as given and return the URL-safe signature.

        `str` messages are UTF-8 encoded first; nothing else about the
        message is changed before signing.

        Raises `esia.errors.SignFailed` (or one of its subclasses) when no
        signature can be produced.
        """
        raise NotImplementedError


def signer_from_config(config: Config) -> Signer:
    """
    Build the `Signer` selected by `config.signer`.
    """

    from esia.config import SignerKind

    if config.signer == SignerKind.PKCS7:
        from esia.signer.pkcs7 import PKCS7Signer

        return PKCS7Signer(
            cert_path=config.cert_path,  # type: ignore[arg-type]
            private_key_path=config.private_key_path,  # type: ignore[arg-type]
            private_key_password=config.private_key_password,
        )
    elif config.signer == SignerKind.CRYPTOPRO:
        from esia.signer.cryptopro import CryptoProSigner

        return CryptoProSigner(
            crypto_path=config.crypto_path,  # type: ignore[arg-type]
            tmp_path=config.tmp_path,
            thumbprint=config.thumbprint,  # type: ignore[arg-type]
            pin=config.pin,  # type: ignore[arg-type]
            keep_temp=config.keep_temp,
        )

    raise InvalidConfiguration(f"unknown signer: {config.signer!r}")
