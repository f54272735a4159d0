# Copyright 2023 The Sigstore Authors
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
Exceptions.
"""

import sys
from logging import Logger


class Error(Exception):
    """Base esia exception type. Defines helpers for diagnostics."""

    def diagnostics(self) -> str:
        """Returns human-friendly error information."""

        return str(self)

    def _cause_context(self) -> str:
        if self.__cause__ is None:
            return ""

        return f"""
        Additional context:

        {self.__cause__}
        """

    def log_and_exit(self, logger: Logger, raise_error: bool = False) -> None:
        """Prints all relevant error information to stderr and exits."""

        remind_verbose = (
            "Raising original exception:"
            if raise_error
            else "For detailed error information, run esia with the `--verbose` flag."
        )

        logger.error(f"{self.diagnostics()}\n{remind_verbose}")

        if raise_error:
            # don't want "during handling another exception"
            self.__suppress_context__ = True
            raise self

        sys.exit(1)


class InvalidConfiguration(Error):
    """Raised when the client configuration is missing or malformed."""

    def diagnostics(self) -> str:
        """Returns diagnostics for the error."""

        return (
            f"""\
        The esia client configuration is invalid: {self}.

        Check the configuration file and try again.
        """
            + self._cause_context()
        )


class CannotGenerateRandom(Error):
    """Raised when the secure random source cannot produce a state value."""


class SignFailed(Error):
    """
    Raised whenever a signer cannot produce a signature.

    Every signing-infrastructure error is a `SignFailed`, so callers that do
    not care about the failing stage can catch this type alone.
    """

    def diagnostics(self) -> str:
        """Returns diagnostics for the error."""

        return (
            f"""\
        Signing failed: {self}.

        Check the signing certificate, key, and temporary directory settings.
        """
            + self._cause_context()
        )


class NoSuchCertificateFile(SignFailed):
    """Raised when the signing certificate cannot be read or parsed."""


class NoSuchKeyFile(SignFailed):
    """Raised when the signing private key cannot be read or decrypted."""


class SignerMessageError(SignFailed):
    """Raised when the message to sign cannot be written to disk."""


class SignerExecError(SignFailed):
    """Raised when the external signing tool cannot run or reports failure."""


class SignerLogError(SignFailed):
    """Raised when the signing tool's invocation log cannot be written."""


class SignerSignatureError(SignFailed):
    """Raised when the detached signature file is missing or empty."""


class RequestFailed(Error):
    """Raised on network failures and malformed response bodies."""

    def diagnostics(self) -> str:
        """Returns diagnostics for the error."""

        return (
            f"""\
        A request to the identity provider failed: {self}.

        Check your internet connection and try again.
        """
            + self._cause_context()
        )


class ExpiredToken(Error):
    """
    Raised when the provider rejects the bearer token with a 401.

    This is a signal rather than a recovery: callers are expected to refresh
    the token and retry the original call themselves.
    """

    def diagnostics(self) -> str:
        """Returns diagnostics for the error."""

        return """\
        The access token was rejected and has possibly expired.

        Refresh the token and try again.
        """


class Forbidden(Error):
    """Raised when the provider answers with a 403."""

    def diagnostics(self) -> str:
        """Returns diagnostics for the error."""

        return """\
        The identity provider refused the request.

        Check the scopes granted to this client.
        """


class TokenDecodeError(Error):
    """
    Raised when a token response, or the payload embedded in an access
    token, does not have the expected shape.
    """
