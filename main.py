#!/usr/bin/env python3
"""
Packhouse admin CLI -- bootstrap accounts and packages without the web UI.

Usage:
  python main.py create-user alice --email alice@example.com --password s3cret-pass
  python main.py create-user root --email root@example.com --password s3cret-pass --admin
  python main.py add-package acme/http --maintainer alice --description "HTTP client"
  python main.py add-maintainer acme/http bob

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the account and package database
                (default: sqlite packhouse.db next to this file).
  SECRET_KEY    Required unless DEBUG=true (see core/config.py).
"""

import argparse
import sys

from auth.manager import UserManager, UsernameTakenError
from auth.models import User
from auth.store import UserStore
from auth.tokens import generate_api_token
from core.config import get_settings
from registry.models import Package
from registry.store import PackageStore, is_valid_package_name


def _create_user(args: argparse.Namespace, users: UserStore, packages: PackageStore) -> int:
    if len(args.password) < 8:
        print("  [!] The password must be at least 8 characters.")
        return 1
    user = User(
        username=args.name,
        email=args.email.lower(),
        role="admin" if args.admin else "user",
        api_token=generate_api_token(),
    )
    try:
        user = UserManager(users).update_user(user, args.password)
    except UsernameTakenError:
        print(f"  [!] The username '{args.name}' is already used.")
        return 1
    print(f"  Created {user.role} '{user.username}' (id={user.id})")
    print(f"  API token: {user.api_token}")
    return 0


def _add_package(args: argparse.Namespace, users: UserStore, packages: PackageStore) -> int:
    if not is_valid_package_name(args.package):
        print(f"  [!] '{args.package}' is not a valid package name. Expected format: vendor/name")
        return 1
    maintainer = users.get_by_username(args.maintainer)
    if maintainer is None:
        print(f"  [!] Unknown user '{args.maintainer}'.")
        return 1
    if packages.get_by_name(args.package) is not None:
        print(f"  [!] Package '{args.package}' already exists.")
        return 1
    package_id = packages.create_package(Package(name=args.package, description=args.description))
    packages.add_maintainer(package_id, maintainer.id)
    print(f"  Added {args.package} (id={package_id}), maintained by {maintainer.username}")
    return 0


def _add_maintainer(args: argparse.Namespace, users: UserStore, packages: PackageStore) -> int:
    package = packages.get_by_name(args.package)
    if package is None:
        print(f"  [!] Unknown package '{args.package}'.")
        return 1
    user = users.get_by_username(args.username)
    if user is None:
        print(f"  [!] Unknown user '{args.username}'.")
        return 1
    if packages.add_maintainer(package.id, user.id):
        print(f"  {user.username} now maintains {package.name}")
    else:
        print(f"  {user.username} already maintains {package.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="packhouse",
        description="Packhouse -- package registry account administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice --email alice@example.com --password s3cret-pass
  python main.py add-package acme/http --maintainer alice
  python main.py add-maintainer acme/http bob
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create_user = sub.add_parser("create-user", help="Create a user account")
    create_user.add_argument("name", help="Username (letters, digits, '.', '_' and '-')")
    create_user.add_argument("--email", required=True, help="Contact email address")
    create_user.add_argument("--password", required=True, help="Initial password (min 8 characters)")
    create_user.add_argument("--admin", action="store_true", help="Grant the admin role")
    create_user.set_defaults(handler=_create_user)

    add_package = sub.add_parser("add-package", help="Register a package with its first maintainer")
    add_package.add_argument("package", metavar="VENDOR/NAME", help="Package name")
    add_package.add_argument("--maintainer", required=True, help="Username of the first maintainer")
    add_package.add_argument("--description", default="", help="Short package description")
    add_package.set_defaults(handler=_add_package)

    add_maintainer = sub.add_parser("add-maintainer", help="Add a maintainer to an existing package")
    add_maintainer.add_argument("package", metavar="VENDOR/NAME", help="Package name")
    add_maintainer.add_argument("username", help="Username of the new maintainer")
    add_maintainer.set_defaults(handler=_add_maintainer)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 0

    settings = get_settings()
    users = UserStore(settings.database_url)
    packages = PackageStore(settings.database_url)
    try:
        return args.handler(args, users, packages)
    finally:
        packages.close()
        users.close()


if __name__ == "__main__":
    sys.exit(main())
