"""Command-line interface for the user management service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from userservice.config import ServiceConfig, load_service_config
from userservice.database import Database, StorageError
from userservice.models import User, UserPatch
from userservice.notifications import Notifier, build_notifier
from userservice.users import UserManager, UserServiceError

logger = logging.getLogger("userservice.main")

_MAX_ATTEMPTS = 3
_KNOWN_COMMANDS = {"serve", "admin", "init-db"}


class _InputAborted(Exception):
    """Raised when the operator gives up on a prompt after repeated bad input."""


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USERSERVICE_CONFIG or config/userservice.yaml)",
    )

    parser = argparse.ArgumentParser(description="User management service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", parents=[common], help="Initialise the user database")

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=None, help="Port for the API")

    subparsers.add_parser(
        "admin", parents=[common], help="Launch the interactive user administration console"
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in _KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _serve(
    *,
    database: Database,
    notifier: Notifier,
    config: ServiceConfig,
    host: str | None,
    port: int | None,
) -> None:
    from userservice.api import create_app
    import uvicorn

    bind_host = host or config.host
    bind_port = port or config.port
    logger.info("Starting user API on http://%s:%s", bind_host, bind_port)

    app = create_app(database=database, notifier=notifier, config=config)
    uvicorn.run(app, host=bind_host, port=bind_port, log_level=config.log_level.lower())


# ----------------------------------------------------------------------
# Interactive console
# ----------------------------------------------------------------------
def _format_user(user: User) -> str:
    created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
    age = "-" if user.age is None else str(user.age)
    line = f"#{user.id}  {user.name} <{user.email}>  age: {age}  created: {created}"
    if user.updated_at is not None:
        line += f"  updated: {user.updated_at.strftime('%Y-%m-%d %H:%M:%S %Z')}"
    return line


def _print_users(users: List[User], *, empty_message: str) -> None:
    if not users:
        print(empty_message)
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Age':>3}  Created")
    print("-" * 88)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        age = "-" if user.age is None else str(user.age)
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {age:>3}  {created}")


def _prompt_int(prompt: str, *, allow_blank: bool = False) -> Optional[int]:
    """Ask for a whole number, re-prompting on malformed input."""

    for _ in range(_MAX_ATTEMPTS):
        raw = input(prompt).strip()
        if not raw and allow_blank:
            return None
        try:
            return int(raw)
        except ValueError:
            print("Please enter a valid whole number.")
    raise _InputAborted("Too many invalid attempts.")


def _prompt_text(prompt: str) -> str:
    """Ask for a required value, re-prompting while the answer is blank."""

    for _ in range(_MAX_ATTEMPTS):
        value = input(prompt).strip()
        if value:
            return value
        print("This field cannot be empty.")
    raise _InputAborted("Too many invalid attempts.")


def _create_user(manager: UserManager) -> None:
    print("\n=== Create User ===")
    name = _prompt_text("Name: ")
    email = _prompt_text("Email address: ")
    age = _prompt_int("Age (optional, press Enter to skip): ", allow_blank=True)

    user = manager.create(name, email, age)
    print(f"Created user {_format_user(user)}")


def _get_user_by_id(manager: UserManager) -> None:
    print("\n=== Get User by ID ===")
    user_id = _prompt_int("User ID: ")
    user = manager.get_by_id(user_id)  # type: ignore[arg-type]
    if user is None:
        print(f"User not found with ID: {user_id}")
        return
    print(_format_user(user))


def _get_user_by_email(manager: UserManager) -> None:
    print("\n=== Get User by Email ===")
    email = _prompt_text("Email address: ")
    user = manager.get_by_email(email)
    if user is None:
        print(f"User not found with email: {email}")
        return
    print(_format_user(user))


def _list_users(manager: UserManager) -> None:
    _print_users(manager.list_all(), empty_message="No users are currently registered.")


def _update_user(manager: UserManager) -> None:
    print("\n=== Update User ===")
    user_id = _prompt_int("User ID to update: ")
    existing = manager.get_by_id(user_id)  # type: ignore[arg-type]
    if existing is None:
        print(f"User not found with ID: {user_id}")
        return

    print(f"Current details: {_format_user(existing)}")
    print("Enter new values (press Enter to keep the current value).")
    name = input(f"Name [{existing.name}]: ").strip()
    email = input(f"Email [{existing.email}]: ").strip()
    current_age = "-" if existing.age is None else existing.age
    age = _prompt_int(f"Age [{current_age}]: ", allow_blank=True)

    patch = UserPatch(name=name or None, email=email or None, age=age)
    if patch.is_empty():
        print("Nothing to update.")
        return

    updated = manager.update(existing.id, patch)
    print(f"Updated user {_format_user(updated)}")


def _delete_user(manager: UserManager) -> None:
    print("\n=== Delete User ===")
    user_id = _prompt_int("User ID to delete: ")
    existing = manager.get_by_id(user_id)  # type: ignore[arg-type]
    if existing is None:
        print(f"User not found with ID: {user_id}")
        return

    print(f"User to delete: {_format_user(existing)}")
    confirmation = input("Are you sure you want to delete this user? (y/N): ").strip().lower()
    if confirmation not in {"y", "yes"}:
        print("Deletion cancelled.")
        return

    if manager.delete(existing.id):
        print("User deleted successfully.")
    else:
        print("User was already removed.")


def _search_users(manager: UserManager) -> None:
    print("\n=== Search Users ===")
    print("  1) Search by name")
    print("  2) Search by age range")
    choice = input("Choose search option: ").strip()

    if choice == "1":
        fragment = input("Name contains: ").strip()
        _print_users(
            manager.search_by_name(fragment),
            empty_message=f"No users found with name containing: {fragment}",
        )
    elif choice == "2":
        min_age = _prompt_int("Minimum age: ")
        max_age = _prompt_int("Maximum age: ")
        _print_users(
            manager.search_by_age_range(min_age, max_age),  # type: ignore[arg-type]
            empty_message=f"No users found aged between {min_age} and {max_age}.",
        )
    else:
        print("Invalid search option.")


_MENU_ACTIONS: Dict[str, Callable[[UserManager], None]] = {
    "1": _create_user,
    "2": _get_user_by_id,
    "3": _get_user_by_email,
    "4": _list_users,
    "5": _update_user,
    "6": _delete_user,
    "7": _search_users,
}


def _run_admin_cli(manager: UserManager) -> None:
    """Provide an interactive user management console for administrators."""

    print("User Management Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) Create user")
            print("  2) Get user by ID")
            print("  3) Get user by email")
            print("  4) List all users")
            print("  5) Update user")
            print("  6) Delete user")
            print("  7) Search users")
            print("  0) Exit")

            choice = input("Enter choice [0-7]: ").strip()

            if choice == "0":
                print("Goodbye!")
                return

            action = _MENU_ACTIONS.get(choice)
            if action is None:
                print("Invalid selection. Please choose a number from the menu.\n")
                continue

            try:
                action(manager)
            except _InputAborted as exc:
                print(f"{exc} Returning to the menu.")
            except UserServiceError as exc:
                print(f"Error: {exc}")
            except StorageError as exc:
                logger.error("Storage failure in admin console: %s", exc)
                print(f"Storage error: {exc}")

            print()
    except (KeyboardInterrupt, EOFError):
        print("\nExiting administration console.")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    try:
        config = load_service_config(Path(args.config) if args.config else None)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    database = Database(config.database_path)
    notifier = build_notifier(config)
    try:
        database.initialize()
        logger.info("Database initialised at %s", config.database_path)

        if args.command == "serve":
            _serve(
                database=database,
                notifier=notifier,
                config=config,
                host=args.host,
                port=args.port,
            )
        elif args.command == "admin":
            _run_admin_cli(UserManager(database, notifier))
        elif args.command == "init-db":
            print("Database initialisation complete.")
    finally:
        notifier.close()
        database.close()


if __name__ == "__main__":
    main()
