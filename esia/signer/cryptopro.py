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
Signing delegated to CryptoPro CSP's `cryptcp` utility.

The certificate never leaves the system certificate store: it is selected by
thumbprint and unlocked with a pin, and `cryptcp` writes a detached
signature next to the message file it was given.
"""

from __future__ import annotations

import logging
import secrets
import subprocess
from pathlib import Path
from typing import List, Union

from esia.errors import (
    SignerExecError,
    SignerLogError,
    SignerMessageError,
    SignerSignatureError,
)
from esia.signer import Message, Signer, _message_bytes, urlsafe_signature

_logger = logging.getLogger(__name__)

CRYPTCP = "cryptcp"


class CryptoProSigner(Signer):
    """
    Produces detached signatures by running `cryptcp -signf`.
    """

    def __init__(
        self,
        crypto_path: Union[str, Path],
        tmp_path: Union[str, Path],
        thumbprint: str,
        pin: str,
        keep_temp: bool = False,
    ) -> None:
        """
        Create a new `CryptoProSigner`.

        `crypto_path` is the directory containing the `cryptcp` executable,
        `tmp_path` the directory used for the message, log and signature
        files of each call. `keep_temp` leaves those files in place, for
        diagnosing a misbehaving CryptoPro installation.
        """
        self._crypto_path = Path(crypto_path)
        self._tmp_path = Path(tmp_path)
        self._thumbprint = thumbprint
        self._pin = pin
        self._keep_temp = keep_temp

    def _command(self, message_path: Path) -> List[str]:
        return [
            str(self._crypto_path / CRYPTCP),
            "-signf",
            "-der",
            "-strict",
            "-cert",
            "-detached",
            "-dir",
            str(self._tmp_path),
            "-dn",
            "root",
            "-thumbprint",
            self._thumbprint,
            "-pin",
            self._pin,
            str(message_path),
        ]

    def _printable(self, cmd: List[str]) -> str:
        # Only the value following `-pin` is secret.
        masked = list(cmd)
        masked[cmd.index("-pin") + 1] = "***"
        return " ".join(masked)

    def sign(self, message: Message) -> str:
        name = secrets.token_hex(16)
        message_path = self._tmp_path / f"{name}.msg"
        log_path = self._tmp_path / f"{name}.res"
        signature_path = self._tmp_path / f"{name}.msg.sgn"

        try:
            try:
                message_path.write_bytes(_message_bytes(message))
            except OSError as exc:
                raise SignerMessageError(
                    f"cannot write message to {message_path}"
                ) from exc

            cmd = self._command(message_path)
            printable = self._printable(cmd)
            _logger.debug(f"running {printable}")
            try:
                result = subprocess.run(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    check=False,
                )
            except (OSError, subprocess.SubprocessError) as exc:
                raise SignerExecError(f"error executing {printable}") from exc

            try:
                log_path.write_text(f"{printable}\n{result.stdout or ''}")
            except OSError as exc:
                raise SignerLogError(
                    f"cannot write sign log to {log_path}"
                ) from exc

            if result.returncode != 0:
                raise SignerExecError(
                    f"{printable} exited with status {result.returncode}"
                )

            try:
                signature = signature_path.read_bytes()
            except OSError as exc:
                raise SignerSignatureError(
                    f"cannot read signature from {signature_path}"
                ) from exc

            if not signature:
                raise SignerSignatureError(f"empty signature in {signature_path}")

            return urlsafe_signature(signature)
        finally:
            if not self._keep_temp:
                for path in (message_path, log_path, signature_path):
                    path.unlink(missing_ok=True)
