"""Operator check for the account connection service's ``.env`` file.

``check`` loads ``AppSettings`` from the file, so a missing
``OAUTH_STATE_SECRET`` or ``TOKEN_ENCRYPTION_SECRET`` fails here instead of on
the first callback, and lists which of Gmail, Discord and Slack have complete
OAuth credentials. ``--require`` turns an unconfigured provider into a failure.

``record`` and ``verify`` keep a SHA-256 baseline of the file; a changed
checksum usually means rotated secrets, and rotating
``TOKEN_ENCRYPTION_SECRET`` forces every stored connection to re-authorize.

Example usages::

    python -m scripts.check_env check --env-file /opt/account-connect/.env \
        --require gmail --require slack

    python -m scripts.check_env record --env-file /opt/account-connect/.env \
        --hash-file /opt/account-connect/.env.sha256
    python -m scripts.check_env verify --env-file /opt/account-connect/.env \
        --hash-file /opt/account-connect/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import Callable, Sequence

from pydantic import ValidationError

from account_connect.core.config import AppSettings, _load_env_file
from account_connect.core.errors import MisconfiguredProviderError
from account_connect.services.provider_registry import ProviderRegistry

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_PROVIDER_ERROR = 4
EXIT_RUNTIME_ERROR = 5


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    """Build settings from ``env_file``; raises ``ValidationError`` on bad values."""
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _report_providers(settings: AppSettings, required: Sequence[str] = ()) -> int:
    """Print one line per provider; fail if a ``required`` one lacks credentials."""
    registry = ProviderRegistry(settings)
    for entry in registry.list_providers():
        state = "configured" if entry["configured"] else "not configured"
        print(f"{entry['display_name']:<8} {state}")

    exit_code = EXIT_OK
    for provider_id in required:
        try:
            registry.get_config(provider_id)
        except MisconfiguredProviderError as exc:
            print(
                f"{registry.display_name(provider_id)} is required but missing: "
                f"{', '.join(exc.missing)}",
                file=sys.stderr,
            )
            exit_code = EXIT_PROVIDER_ERROR
    return exit_code


def _record_checksum(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded .env baseline in {hash_file} ({checksum})")
    return EXIT_OK


def _verify_checksum(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"No baseline at {hash_file}; run 'record' first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected == actual:
        print("Environment checksum OK.")
        return EXIT_OK

    print(
        ".env differs from the recorded baseline.\n"
        f"  expected: {expected}\n"
        f"  actual:   {actual}\n"
        "A changed TOKEN_ENCRYPTION_SECRET makes stored connections unreadable; "
        "confirm the edit before restarting.",
        file=sys.stderr,
    )
    return EXIT_CHECKSUM_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check account-connect settings, provider credentials and .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_env_file(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Environment file to load (default: ./.env).",
        )

    check_parser = subparsers.add_parser(
        "check", help="Load settings and list which providers are configured."
    )
    add_env_file(check_parser)
    check_parser.add_argument(
        "--require",
        action="append",
        default=[],
        choices=("gmail", "discord", "slack"),
        help="Fail unless this provider is configured; may be repeated.",
    )

    for name, help_text, hash_help in (
        ("record", "Load settings and write the .env baseline.", "Baseline file to write."),
        ("verify", "Load settings and compare .env with the baseline.", "Baseline file to read."),
    ):
        subparser = subparsers.add_parser(name, help=help_text)
        add_env_file(subparser)
        subparser.add_argument("--hash-file", required=True, type=Path, help=hash_help)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(f"Settings are missing or invalid:\n{exc.json(indent=2)}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except OSError as exc:
        print(f"Could not read {env_file}: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    handlers: dict[str, Callable[[], int]] = {
        "check": lambda: _report_providers(settings, args.require),
        "record": lambda: _record_checksum(env_file, args.hash_file),
        "verify": lambda: _verify_checksum(env_file, args.hash_file),
    }
    return handlers[args.command]()


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
