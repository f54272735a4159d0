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

import datetime

import pytest
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import NameOID

from esia import errors
from esia.signer import urlsafe_signature
from esia.signer.pkcs7 import PKCS7Signer


@pytest.fixture(scope="module")
def other_cert():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "someone else")])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(key, hashes.SHA256())
    )


class TestPKCS7Signer:
    def test_sign_is_urlsafe(self, signing_material):
        cert_path, key_path, _ = signing_material
        signer = PKCS7Signer(cert_path, key_path)

        signature = signer.sign("openid fullname2024.01.02 03:04:05 +0300CLIENTstate")

        assert signature
        assert not set("+/=") & set(signature)

    def test_signature_verifies(self, signing_material, verify_signature):
        cert_path, key_path, _ = signing_material
        message = "openid fullname2024.01.02 03:04:05 +0300CLIENTstate"

        verify_signature(PKCS7Signer(cert_path, key_path).sign(message), message)

    def test_signature_is_detached_der(
        self, signing_material, signing_cert, decode_signature
    ):
        cert_path, key_path, _ = signing_material
        signer = PKCS7Signer(cert_path, key_path)
        message = b"line one\nline two"

        der = decode_signature(signer.sign(message))

        # A DER SEQUENCE, carrying the signer's certificate.
        assert der[0] == 0x30
        assert pkcs7.load_der_pkcs7_certificates(der) == [signing_cert]
        assert signing_cert.public_bytes(serialization.Encoding.DER) in der

        # Detached: the message itself is not embedded.
        assert message not in der

    def test_signature_is_over_exact_bytes(self, signing_material, verify_signature):
        cert_path, key_path, _ = signing_material
        signature = PKCS7Signer(cert_path, key_path).sign(b"line one\nline two")

        verify_signature(signature, b"line one\nline two")

        # No line-ending canonicalization happened before signing.
        with pytest.raises(InvalidSignature):
            verify_signature(signature, b"line one\r\nline two")

    def test_changed_message_fails(self, signing_material, verify_signature):
        cert_path, key_path, _ = signing_material
        signature = PKCS7Signer(cert_path, key_path).sign("scope+ts+client+state")

        with pytest.raises(InvalidSignature):
            verify_signature(signature, "scope+ts+client+statf")

    def test_corrupted_signature_fails(
        self, signing_material, decode_signature, verify_signature
    ):
        cert_path, key_path, _ = signing_material
        der = bytearray(decode_signature(PKCS7Signer(cert_path, key_path).sign(b"m")))
        # The last byte of the DER belongs to the SignerInfo's signature value.
        der[-1] ^= 0xFF

        with pytest.raises(InvalidSignature):
            verify_signature(urlsafe_signature(bytes(der)), b"m")

    def test_other_key_fails(self, signing_material, verify_signature, other_cert):
        cert_path, key_path, _ = signing_material
        signature = PKCS7Signer(cert_path, key_path).sign(b"m")

        with pytest.raises(InvalidSignature):
            verify_signature(signature, b"m", cert=other_cert)

    def test_str_messages_are_utf8(self, signing_material, verify_signature):
        cert_path, key_path, _ = signing_material
        signer = PKCS7Signer(cert_path, key_path)
        message = "фамилия имя"

        verify_signature(signer.sign(message), message.encode("utf-8"))

    def test_encrypted_key(self, signing_material, verify_signature):
        cert_path, _, encrypted_key_path = signing_material
        signer = PKCS7Signer(cert_path, encrypted_key_path, "hunter2")

        verify_signature(signer.sign(b"hello"), b"hello")

    def test_wrong_password(self, signing_material):
        cert_path, _, encrypted_key_path = signing_material
        signer = PKCS7Signer(cert_path, encrypted_key_path, "not-the-password")

        with pytest.raises(errors.NoSuchKeyFile, match="cannot load private key"):
            signer.sign(b"hello")

    def test_missing_password(self, signing_material):
        cert_path, _, encrypted_key_path = signing_material
        signer = PKCS7Signer(cert_path, encrypted_key_path)

        with pytest.raises(errors.NoSuchKeyFile):
            signer.sign(b"hello")

    def test_missing_certificate(self, tmp_path, signing_material):
        _, key_path, _ = signing_material
        signer = PKCS7Signer(tmp_path / "nonexistent.crt", key_path)

        with pytest.raises(errors.NoSuchCertificateFile) as exc_info:
            signer.sign(b"hello")

        assert isinstance(exc_info.value, errors.SignFailed)
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_garbage_certificate(self, tmp_path, signing_material):
        _, key_path, _ = signing_material
        bad = tmp_path / "bad.crt"
        bad.write_text("not a certificate")
        signer = PKCS7Signer(bad, key_path)

        with pytest.raises(errors.NoSuchCertificateFile):
            signer.sign(b"hello")

    def test_missing_key(self, tmp_path, signing_material):
        cert_path, _, _ = signing_material
        signer = PKCS7Signer(cert_path, tmp_path / "nonexistent.key")

        with pytest.raises(errors.NoSuchKeyFile):
            signer.sign(b"hello")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (b"\xfb\xff", "-_8"),
        (b"\xfb\xff\xfe", "-__-"),
        (b"abc", "YWJj"),
        (b"ab", "YWI"),
    ],
)
def test_urlsafe_signature(raw, expected):
    assert urlsafe_signature(raw) == expected
