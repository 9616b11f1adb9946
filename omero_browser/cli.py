#!/usr/bin/env python3
from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from omero_browser.browser import OmeroBrowser
from omero_browser.client import OmeroWebClient
from omero_browser.config import BrowserOptions, options_from_config, read_config
from omero_browser.errors import AuthError, BrowserError
from omero_browser.model import ALL_MEMBERS, ObjectRef, RemoteObject
from omero_browser.reconcile import UpdatePolicy
from omero_browser.uris import parse_object_uri, server_uri

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="omero-browser", description="Browse an OMERO server from the command line")
    parser.add_argument("--config", default=None, help="Path to config file (default: ./config.dat when present)")
    parser.add_argument("--server", default=None, help="Server address, e.g. https://omero.example.org")
    parser.add_argument("--username", default=None, help="Login name")
    parser.add_argument("--password", default=None, help="Password (prompted for when missing)")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    commands = parser.add_subparsers(dest="command", required=True)

    tree = commands.add_parser("tree", help="Print the hierarchy as JSON objects, one per line")
    tree.add_argument("--owner", type=int, default=None, help="Owner id (default: logged in user, -1: all members)")
    tree.add_argument("--filter", default="", help="Only top-level containers whose name contains this text")
    tree.add_argument("--depth", type=int, default=1, help="Levels below the server to print (default: 1)")

    uri = commands.add_parser("uri", help="Show the server address and object of a web client link")
    uri.add_argument("object_uri")

    push = commands.add_parser("push-metadata", help="Send KEY=VALUE pairs to an object")
    push.add_argument("object_uri")
    push.add_argument("pairs", nargs="+", metavar="KEY=VALUE", help="A value equal to its key is sent as a tag")
    policies = [p.value for p in UpdatePolicy]
    push.add_argument("--kvp-policy", default="keep", choices=policies, help="Merge policy for key-values (default: keep)")
    push.add_argument("--tag-policy", default="keep", choices=policies, help="Merge policy for tags (default: keep)")
    return parser


def _load_options(args: argparse.Namespace) -> BrowserOptions:
    config: Dict[str, str] = {}
    if args.config is not None:
        config = read_config(args.config)
    elif Path("./config.dat").exists():
        config = read_config("./config.dat")
    return options_from_config(config, server_uri=args.server, username=args.username)


def _parse_pairs(items: List[str]) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for item in items:
        if "=" not in item:
            raise ValueError(f"Expected KEY=VALUE, got {item!r}")
        key, value = item.split("=", 1)
        pairs[key.strip()] = value.strip()
    return pairs


def _print_tree(browser: OmeroBrowser, node: RemoteObject, depth: int) -> None:
    if depth <= 0:
        return
    for child in browser.children_sync(node):
        print(json.dumps(child.to_dict()), flush=True)
        if not browser.is_leaf(child):
            _print_tree(browser, child, depth - 1)


def _connect(args: argparse.Namespace, options: BrowserOptions) -> OmeroBrowser:
    if not options.server_uri or not options.username:
        raise AuthError("bad_url", "A server address and username are required")
    password = args.password if args.password is not None else getpass.getpass(f"Password for {options.username}: ")
    return OmeroBrowser.connect(OmeroWebClient(options), options, password)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "uri":
        try:
            obj_type, obj_id = parse_object_uri(args.object_uri)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        print(json.dumps({"server": server_uri(args.object_uri), "type": obj_type.value, "id": obj_id}))
        return 0

    try:
        options = _load_options(args)
        browser = _connect(args, options)
    except AuthError as e:
        print(f"Error: {e} ({e.hint})", file=sys.stderr)
        return 1
    except BrowserError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        if args.command == "tree":
            if args.owner is not None:
                owner = ALL_MEMBERS
                if args.owner != ALL_MEMBERS.id:
                    members = browser.session.group_members()
                    owner = next((o for o in members if o.id == args.owner), None)
                    if owner is None:
                        print(f"Error: no owner {args.owner} in group {browser.session.active_group}", file=sys.stderr)
                        return 2
                browser.select(owner=owner)
            browser.select(text=args.filter)
            _print_tree(browser, browser.root(), args.depth)
        elif args.command == "push-metadata":
            obj_type, obj_id = parse_object_uri(args.object_uri)
            report = browser.push_metadata(
                ObjectRef(obj_type, obj_id),
                _parse_pairs(args.pairs),
                UpdatePolicy.from_string(args.kvp_policy),
                UpdatePolicy.from_string(args.tag_policy),
            )
            print(report.summary())
    except (BrowserError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        browser.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
