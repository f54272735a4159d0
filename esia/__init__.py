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
The `esia` Python APIs.

For command-line usage of `esia`, refer to the `esia` README.

Otherwise, here are some quick starting points:

* `esia.openid`: the signed authorization-code flow and resource lookups
* `esia.signer`: the signing strategies used in place of a client secret
* `esia.config`: client configuration
* `esia.testing`: a canned-data stand-in for `esia.openid.OpenId`
"""

from esia._version import __version__

__all__ = ["__version__"]
