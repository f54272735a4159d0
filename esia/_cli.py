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

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import NoReturn

from rich.console import Console
from rich.logging import RichHandler

from esia import __version__
from esia.config import Config
from esia.errors import Error
from esia.openid import Client, OpenId
from esia.signer import signer_from_config

_console = Console(file=sys.stderr)
logging.basicConfig(
    format="%(message)s", datefmt="[%X]", handlers=[RichHandler(console=_console)]
)
_logger = logging.getLogger(__name__)

# NOTE: We configure the top package logger, rather than the root logger,
# to avoid overly verbose logging in third-party code by default.
_package_logger = logging.getLogger("esia")
_package_logger.setLevel(os.environ.get("ESIA_LOGLEVEL", "INFO").upper())


def _invalid_arguments(args: argparse.Namespace, message: str) -> NoReturn:
    """
    An `argparse` helper that fixes up the type hints on our use of
    `ArgumentParser.error`.
    """
    args._parser.error(message)
    raise ValueError("unreachable")


def _parser() -> argparse.ArgumentParser:
    # Arguments in parent_parser can be used for both commands and subcommands
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="run with additional debug logging; supply multiple times to increase verbosity",
    )

    parser = argparse.ArgumentParser(
        prog="esia",
        description="a client for the ESIA signed OAuth2 flow",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"esia {__version__}"
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        type=Path,
        default=os.getenv("ESIA_CONFIG"),
        help="The JSON client configuration to use",
    )

    subcommands = parser.add_subparsers(
        required=True,
        dest="subcommand",
        metavar="COMMAND",
        help="the operation to perform",
    )

    subcommands.add_parser(
        "auth-url",
        help="print a signed authorization URL",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )

    logout = subcommands.add_parser(
        "logout-url",
        help="print a logout URL",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    logout.add_argument(
        "--redirect-url",
        metavar="URL",
        type=str,
        help="Where the provider should send the user after logging out",
    )

    token = subcommands.add_parser(
        "token",
        help="exchange an authorization code for tokens",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    token.add_argument(
        "code",
        metavar="CODE",
        type=str,
        help="The authorization code the provider redirected back with",
    )

    refresh = subcommands.add_parser(
        "refresh",
        help="exchange a refresh token for new tokens",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    refresh.add_argument(
        "refresh_token",
        metavar="REFRESH_TOKEN",
        type=str,
        help="The refresh token from an earlier exchange",
    )

    sign = subcommands.add_parser(
        "sign",
        help="sign a message with the configured signer (for diagnostics)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        parents=[parent_parser],
    )
    sign.add_argument(
        "message",
        metavar="MESSAGE",
        type=str,
        help="The message to sign",
    )

    return parser


def _load_config(args: argparse.Namespace) -> Config:
    if args.config is None:
        _invalid_arguments(args, "no configuration: pass --config or set ESIA_CONFIG")

    try:
        raw = args.config.read_bytes()
    except OSError as exc:
        _invalid_arguments(args, f"cannot read {args.config}: {exc}")

    return Config.from_json(raw)


def _print_tokens(client: Client) -> None:
    print(
        json.dumps(
            {
                "access_token": client.get_resource_token(),
                "refresh_token": client.get_refresh_token(),
                "oid": client.oid,
            },
            indent=2,
        )
    )


def main(args: list[str] | None = None) -> None:
    if not args:
        args = sys.argv[1:]

    parser = _parser()
    args = parser.parse_args(args)

    # Configure logging upfront, so that we don't miss anything.
    if args.verbose >= 1:
        _package_logger.setLevel("DEBUG")
    if args.verbose >= 2:
        logging.getLogger().setLevel("DEBUG")

    _logger.debug(f"parsed arguments {args}")

    # Stuff the parser back into our namespace, so that we can use it for
    # error handling later.
    args._parser = parser

    try:
        config = _load_config(args)

        if args.subcommand == "sign":
            print(signer_from_config(config).sign(args.message))
            return

        client = OpenId(config)
        if args.subcommand == "auth-url":
            print(client.build_authorization_url())
        elif args.subcommand == "logout-url":
            print(client.build_logout_url(args.redirect_url))
        elif args.subcommand == "token":
            client.exchange_code_for_token(args.code)
            _print_tokens(client)
        elif args.subcommand == "refresh":
            client.set_refresh_token(args.refresh_token)
            client.refresh_token()
            _print_tokens(client)
        else:
            _invalid_arguments(args, f"Unknown subcommand: {args.subcommand}")
    except Error as e:
        e.log_and_exit(_logger, args.verbose >= 1)
