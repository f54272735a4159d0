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
Per-client session state: the tokens and subject id of one authorization flow.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AuthState(str, Enum):
    """
    Where a session is in the authorization flow.
    """

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


@dataclass
class Session:
    """
    Mutable session state, owned by a single `OpenId` instance.

    Never persisted by this package; callers that want to keep a session
    across processes read the tokens out and restore them with
    `OpenId.set_tokens`.
    """

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    oid: Optional[str] = None
    state: AuthState = AuthState.UNAUTHENTICATED

    def update(self, access_token: str, refresh_token: str) -> None:
        """
        Record a freshly issued token pair.
        """
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.state = AuthState.AUTHENTICATED

    def restore_refresh_token(self, refresh_token: str) -> None:
        """
        Record a refresh token on its own, leaving `state` untouched.
        """
        self.refresh_token = refresh_token

    def clear(self) -> None:
        """
        Forget all tokens and the subject id.
        """
        self.access_token = None
        self.refresh_token = None
        self.oid = None
        self.state = AuthState.UNAUTHENTICATED
