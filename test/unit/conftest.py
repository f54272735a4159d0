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

from __future__ import annotations

import base64
import datetime
import hashlib
import json
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, Union

import jwt
import pretend
import pytest
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from esia._internal.http import HTTPError, HTTPResponse, Transport
from esia.config import Config

TEST_CLIENT_ID = "TESTCLIENT"
TEST_REDIRECT_URL = "https://client.example.com/esia/callback"
TEST_KEY_PASSWORD = "hunter2"


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def signing_cert(signing_key) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "esia test client")])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(signing_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(signing_key, hashes.SHA256())
    )


@pytest.fixture
def signing_material(tmp_path, signing_key, signing_cert):
    """
    Writes the test certificate and key to disk, returning their paths as
    `(cert_path, key_path, encrypted_key_path)`.
    """
    cert_path = tmp_path / "client.crt"
    cert_path.write_bytes(signing_cert.public_bytes(serialization.Encoding.PEM))

    key_path = tmp_path / "client.key"
    key_path.write_bytes(
        signing_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )

    encrypted_key_path = tmp_path / "client-encrypted.key"
    encrypted_key_path.write_bytes(
        signing_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(TEST_KEY_PASSWORD.encode()),
        )
    )

    return cert_path, key_path, encrypted_key_path


@pytest.fixture
def config(signing_material) -> Callable[..., Config]:
    cert_path, key_path, _ = signing_material

    def _config(**kwargs: Any) -> Config:
        values = {
            "client_id": TEST_CLIENT_ID,
            "redirect_url": TEST_REDIRECT_URL,
            "portal_url": "https://esia.example.com/",
            "cert_path": str(cert_path),
            "private_key_path": str(key_path),
        }
        values.update(kwargs)
        return Config(**values)

    return _config


def _decode_signature(signature: str) -> bytes:
    return base64.urlsafe_b64decode(signature + "=" * (-len(signature) % 4))


@pytest.fixture
def decode_signature() -> Callable[[str], bytes]:
    """
    Reverses the URL-safe base64 encoding of a `client_secret`.
    """
    return _decode_signature


# id-messageDigest, 1.2.840.113549.1.9.4
_MESSAGE_DIGEST_OID = bytes.fromhex("2a864886f70d010904")

_Element = Tuple[int, int, int, int]


def _tlv(der: bytes, offset: int) -> _Element:
    """
    Reads the DER element at `offset`, returning
    `(tag, offset, content_start, content_end)`.
    """
    tag = der[offset]
    length = der[offset + 1]
    start = offset + 2
    if length & 0x80:
        n = length & 0x7F
        length = int.from_bytes(der[start : start + n], "big")
        start += n
    return tag, offset, start, start + length


def _children(der: bytes, parent: _Element) -> List[_Element]:
    children = []
    offset = parent[2]
    while offset < parent[3]:
        child = _tlv(der, offset)
        children.append(child)
        offset = child[3]
    return children


def _verify_pkcs7(der: bytes, message: bytes, cert: x509.Certificate) -> None:
    """
    Verifies a detached CMS SignedData over `message`, with a single RSA
    signer and signed attributes. Raises `InvalidSignature` on mismatch.
    """
    # ContentInfo ::= SEQUENCE { contentType, [0] EXPLICIT SignedData }
    _, explicit = _children(der, _tlv(der, 0))
    (signed_data,) = _children(der, explicit)

    # signerInfos is the last field of SignedData.
    signer_infos = _children(der, signed_data)[-1]
    assert signer_infos[0] == 0x31
    (signer_info,) = _children(der, signer_infos)

    fields = _children(der, signer_info)
    attrs = next(f for f in fields if f[0] == 0xA0)
    signature = next(f for f in fields if f[0] == 0x04)

    digest = None
    for attr in _children(der, attrs):
        oid, values = _children(der, attr)
        if der[oid[2] : oid[3]] == _MESSAGE_DIGEST_OID:
            (value,) = _children(der, values)
            digest = der[value[2] : value[3]]
    if digest != hashlib.sha256(message).digest():
        raise InvalidSignature("messageDigest does not match the message")

    # The signature covers the DER of the attributes, tagged as a SET OF
    # rather than with their [0] IMPLICIT tag.
    signed_attrs = b"\x31" + der[attrs[1] + 1 : attrs[3]]
    cert.public_key().verify(
        der[signature[2] : signature[3]],
        signed_attrs,
        padding.PKCS1v15(),
        hashes.SHA256(),
    )


@pytest.fixture
def verify_signature(signing_cert) -> Callable[..., None]:
    """
    Verifies a URL-safe `client_secret` against `message` and the signing
    certificate (or `cert`, if given). Raises `InvalidSignature` on mismatch.
    """

    def _verify_signature(
        signature: str,
        message: Union[str, bytes],
        cert: Optional[x509.Certificate] = None,
    ) -> None:
        if isinstance(message, str):
            message = message.encode("utf-8")
        _verify_pkcs7(
            _decode_signature(signature), message, cert or signing_cert
        )

    return _verify_signature


@pytest.fixture
def json_response() -> Callable[..., HTTPResponse]:
    def _json_response(body: Any, status: int = 200) -> HTTPResponse:
        return HTTPResponse(status, "OK", json.dumps(body).encode())

    return _json_response


@pytest.fixture
def http_error() -> Callable[[int], HTTPError]:
    def _http_error(status: int) -> HTTPError:
        return HTTPError(status, "nope", b'{"error": "nope"}')

    return _http_error


@pytest.fixture
def stub_transport():
    """
    A `Transport` that replays the given responses in order and records
    every request it was asked to send. Exceptions in the response list are
    raised instead of returned.
    """

    class StubTransport(Transport):
        def __init__(self, responses):
            self.responses = list(responses)
            self.calls = []

        def send_request(self, method, url, headers, body=None):
            self.calls.append(
                pretend.stub(
                    method=method, url=url, headers=dict(headers), body=body
                )
            )
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

    return StubTransport


@pytest.fixture
def stub_signer():
    """
    A signer that records each message and always returns `signature`.
    """

    def _stub_signer(signature: str = "c2lnbmF0dXJl"):
        return pretend.stub(sign=pretend.call_recorder(lambda message: signature))

    return _stub_signer


@pytest.fixture
def esia_token():
    """
    Builds a three-segment access token whose payload carries the given
    subject id.
    """

    def _esia_token(sbj_id: Optional[Any] = 42, **claims: Any) -> str:
        if sbj_id is not None:
            claims["urn:esia:sbj_id"] = sbj_id
        return jwt.encode(claims, key="definitely not secure", algorithm="HS256")

    return _esia_token


@pytest.fixture
def config_file(tmp_path, signing_material) -> Callable[..., Path]:
    cert_path, key_path, _ = signing_material

    def _config_file(**kwargs: Any) -> Path:
        values = {
            "client_id": TEST_CLIENT_ID,
            "redirect_url": TEST_REDIRECT_URL,
            "portal_url": "https://esia.example.com/",
            "cert_path": str(cert_path),
            "private_key_path": str(key_path),
        }
        values.update(kwargs)
        path = tmp_path / "esia.json"
        path.write_text(json.dumps(values))
        return path

    return _config_file
