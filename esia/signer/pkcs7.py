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
In-process PKCS#7 signing with a certificate and private key on disk.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509 import Certificate, load_pem_x509_certificate

from esia.errors import NoSuchCertificateFile, NoSuchKeyFile, SignFailed
from esia.signer import Message, Signer, _message_bytes, urlsafe_signature

_logger = logging.getLogger(__name__)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]


class PKCS7Signer(Signer):
    """
    Produces DER-encoded, detached PKCS#7 signatures with SHA-256.
    """

    def __init__(
        self,
        cert_path: Union[str, Path],
        private_key_path: Union[str, Path],
        private_key_password: Optional[str] = None,
    ) -> None:
        """
        Create a new `PKCS7Signer`.

        `cert_path` and `private_key_path` point at PEM files. The key may
        be encrypted, in which case `private_key_password` unlocks it.

        The files are read on every call to `sign`, so that a rotated
        certificate is picked up without rebuilding the client.
        """
        self._cert_path = Path(cert_path)
        self._private_key_path = Path(private_key_path)
        self._private_key_password = private_key_password

    def _load_certificate(self) -> Certificate:
        try:
            return load_pem_x509_certificate(self._cert_path.read_bytes())
        except (OSError, ValueError) as exc:
            raise NoSuchCertificateFile(
                f"cannot load certificate from {self._cert_path}"
            ) from exc

    def _load_private_key(self) -> PrivateKey:
        password = (
            self._private_key_password.encode()
            if self._private_key_password
            else None
        )
        try:
            key = serialization.load_pem_private_key(
                self._private_key_path.read_bytes(), password=password
            )
        except (OSError, ValueError, TypeError) as exc:
            raise NoSuchKeyFile(
                f"cannot load private key from {self._private_key_path}"
            ) from exc

        if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise NoSuchKeyFile(
                f"unsupported private key type in {self._private_key_path}"
            )

        return key

    def sign(self, message: Message) -> str:
        data = _message_bytes(message)
        cert = self._load_certificate()
        key = self._load_private_key()

        # Binary mode: the provider rebuilds the same byte string, so no
        # line-ending translation may happen before signing.
        options = [pkcs7.PKCS7Options.DetachedSignature, pkcs7.PKCS7Options.Binary]

        try:
            signature = (
                pkcs7.PKCS7SignatureBuilder()
                .set_data(data)
                .add_signer(cert, key, hashes.SHA256())
                .sign(serialization.Encoding.DER, options)
            )
        except (TypeError, ValueError) as exc:
            raise SignFailed("cannot produce a PKCS#7 signature") from exc

        _logger.debug(f"signed {len(data)} bytes with {self._cert_path}")

        return urlsafe_signature(signature)
