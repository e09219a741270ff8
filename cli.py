#!/usr/bin/env python3
"""Simple CLI for onboarding and inspecting a PIN wallet locally"""

import argparse
import asyncio
import sys
import threading
import uuid
from typing import Optional

from pinwallet.config import settings
from pinwallet.core.session import (
    ConnectionStatus,
    ErrorCategory,
    OnboardingMode,
    OnboardingStateMachine,
)
from pinwallet.logging_config import setup_logging
from pinwallet.providers.custody import CredentialPair
from pinwallet.providers.signing import (
    SigningCallback,
    SigningError,
    SigningProvider,
    register_signing_provider_factory,
)


class ConsoleSigningProvider(SigningProvider):
    """Operator-driven signing: the PIN step happens on the signing device, confirmed here."""

    def __init__(self, app_id: str):
        self.app_id = app_id
        self._credentials: Optional[CredentialPair] = None
        self._device_id = uuid.uuid4().hex

    def is_ready(self) -> bool:
        return True

    def set_authentication(self, credentials: CredentialPair) -> None:
        self._credentials = credentials

    def execute(self, challenge_id: str, callback: SigningCallback) -> None:
        if self._credentials is None:
            raise SigningError("Signing provider is not authenticated")
        # input() blocks, so the prompt runs off the event loop
        threading.Thread(target=self._prompt, args=(challenge_id, callback), daemon=True).start()

    def _prompt(self, challenge_id: str, callback: SigningCallback) -> None:
        print(f"\n🔐 Challenge {challenge_id}")
        print("Complete the PIN step on your signing device.")
        try:
            answer = input("Done? [y/N]: ").strip().lower()
        except EOFError:
            answer = ""
        if answer in ("y", "yes"):
            callback(None, {"challengeId": challenge_id, "status": "COMPLETE"})
        else:
            callback({"code": 155706, "message": "Challenge cancelled by user"}, None)

    async def get_device_id(self) -> str:
        return self._device_id


def print_status(status: ConnectionStatus) -> None:
    """Pretty print the connection status"""
    icon = "✅" if status.is_connected else ("❌" if status.is_error else "⚪")
    print(f"\n{icon} {status.status_text}")
    print("=" * 50)
    if status.identity:
        print(f"User: {status.identity}")
    if status.is_connected:
        print(f"Address: {status.address}")
        print(f"Wallet ID: {status.wallet_id}")
        print(f"Chain: {status.chain_label}")
        if status.balance is not None:
            print(f"USDC: {status.balance}")
    if status.message:
        print(f"{'Error' if status.is_error else 'Info'}: {status.message}")


async def _on_progress(status: ConnectionStatus) -> None:
    if status.is_busy:
        print(f"  … {status.status_text}")


async def cli_status(machine: OnboardingStateMachine):
    print_status(await machine.restore())


async def cli_onboard(machine: OnboardingStateMachine, identity: str, returning: bool):
    """Run onboarding, offering a retry when wallet creation did not finish"""
    mode = OnboardingMode.RETURNING if returning else OnboardingMode.NEW
    print(f"🚀 Connecting {identity.strip()} ({mode.value} user)...")

    machine.register_status_callback(_on_progress)
    status = await machine.start(identity, mode)

    while status.error_category in (ErrorCategory.SIGNING, ErrorCategory.PENDING):
        print_status(status)
        answer = input("\nRetry wallet creation? [y/N]: ").strip().lower()
        if answer not in ("y", "yes"):
            break
        status = await machine.retry()

    print_status(status)


async def cli_balance(machine: OnboardingStateMachine):
    status = await machine.restore()
    if not status.is_connected:
        print("❌ No wallet connected. Run 'onboard <identity>' first.")
        return
    balance = await machine.refresh_balance()
    print(f"💰 USDC balance: {balance if balance is not None else 'unavailable'}")


async def cli_wallets(machine: OnboardingStateMachine):
    status = await machine.restore()
    if not status.is_connected:
        print("❌ No wallet connected. Run 'onboard <identity>' first.")
        return

    wallets = await machine.refresh_wallets()
    if not wallets:
        print_status(machine.status)
        return

    print(f"\nWallets for {machine.identity}:")
    print("-" * 50)
    for i, wallet in enumerate(wallets, 1):
        primary = " (primary)" if i == 1 else ""
        print(f"{i:2d}. {wallet.address} {wallet.chain_label or ''}{primary}")
        print(f"    id: {wallet.id}")


async def cli_disconnect(machine: OnboardingStateMachine):
    await machine.disconnect()
    print("👋 Disconnected. Stored session cleared.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PIN Wallet CLI")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show the stored session")

    onboard_parser = subparsers.add_parser("onboard", help="Create or connect a wallet")
    onboard_parser.add_argument("identity", help="User ID (at least 5 characters)")
    onboard_parser.add_argument("--returning", action="store_true", help="Skip user creation for an existing user")

    retry_parser = subparsers.add_parser("retry", help="Resume a half-finished onboarding for an existing user")
    retry_parser.add_argument("identity", help="User ID used during onboarding")

    subparsers.add_parser("balance", help="Show the USDC balance of the primary wallet")
    subparsers.add_parser("wallets", help="List the wallets of the stored session")
    subparsers.add_parser("disconnect", help="Clear the stored session")

    return parser


async def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging()
    register_signing_provider_factory(ConsoleSigningProvider)
    if not settings.has_custody_key:
        print("⚠️  CIRCLE_API_KEY is not set; custody calls will be rejected")

    machine = OnboardingStateMachine()
    command = args.command.lower()

    if command == "status":
        await cli_status(machine)

    elif command == "onboard":
        await cli_onboard(machine, args.identity, args.returning)

    elif command == "retry":
        # Credentials never outlive the process, so resuming re-issues them
        await cli_onboard(machine, args.identity, returning=True)

    elif command == "balance":
        await cli_balance(machine)

    elif command == "wallets":
        await cli_wallets(machine)

    elif command == "disconnect":
        await cli_disconnect(machine)

    else:
        print(f"❌ Unknown command: {command}")
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
