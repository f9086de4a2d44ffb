#!/usr/bin/env python3
"""
Custody operator CLI.

Usage:
    python custody_cli.py register user-42 [--private-key 0x...]
    python custody_cli.py setup user-42
    python custody_cli.py sync user-42 [--continue-setup]
    python custody_cli.py status user-42
    python custody_cli.py order user-42 --market 0x.. --token 123 --side BUY --price 0.42 --size 10
    python custody_cli.py cancel user-42 <order-id>
"""

import argparse
import asyncio
import json
import sys
from decimal import Decimal
from typing import Any

import dotenv

from custody.bootstrap import Services, build_services
from custody.exceptions import CustodyError
from execution.models import OrderRequest
from helpers.unified_logger import get_core_logger
from trading_config.settings import Settings

logger = get_core_logger("cli")


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description="Provision custodial accounts and manage orders.")
    parser.add_argument(
        "--env-file",
        type=str,
        default=".env",
        help="Path to the environment file (default: .env).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Create an account for an external user")
    register.add_argument("external_id")
    register.add_argument("--private-key", default=None, help="Import an existing owner key")

    for name, help_text in (
        ("setup", "Deploy, approve and create credentials"),
        ("deploy", "Deploy the account's Safe"),
        ("status", "Show stored lifecycle state"),
        ("approvals", "Ensure token approvals"),
        ("verify-approvals", "Read approvals back from the chain"),
        ("reset-credentials", "Re-issue trading credentials"),
        ("sync-orders", "Reconcile open orders with the book"),
        ("cancel-all", "Cancel every open order"),
    ):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("external_id")
        if name == "approvals":
            command.add_argument("--force", action="store_true", help="Re-send all approvals")

    recover = sub.add_parser("recover", help="Adopt a Safe that already exists on-chain")
    recover.add_argument("external_id")
    recover.add_argument("--address", default=None, help="Candidate Safe address")

    sync = sub.add_parser("sync", help="Reconcile the account with chain and remote state")
    sync.add_argument("external_id")
    sync.add_argument("--continue-setup", action="store_true")

    order = sub.add_parser("order", help="Place a single order")
    order.add_argument("external_id")
    order.add_argument("--market", required=True, help="Condition id")
    order.add_argument("--token", required=True, help="Outcome token id")
    order.add_argument("--side", required=True, choices=["BUY", "SELL"])
    order.add_argument("--price", required=True, type=Decimal)
    order.add_argument("--size", required=True, type=Decimal)
    order.add_argument("--type", default="GTC", choices=["GTC", "GTD", "FOK", "FAK", "LIMIT", "MARKET"])
    order.add_argument("--expiration", type=int, default=None)

    batch = sub.add_parser("batch", help="Place orders from a JSON file atomically")
    batch.add_argument("external_id")
    batch.add_argument("orders_file", help="JSON list of {market_id, token_id, side, price, size, order_type}")

    cancel = sub.add_parser("cancel", help="Cancel one order by local or remote id")
    cancel.add_argument("external_id")
    cancel.add_argument("order_id")

    return parser.parse_args(argv)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run_command(args, services: Services) -> Any:
    provisioner = services.provisioner

    if args.command == "register":
        account = await provisioner.register(args.external_id, args.private_key)
        return {"accountId": account.id, "ownerAddress": account.owner_address}

    account = await provisioner.get_account(args.external_id)

    if args.command == "setup":
        account = await provisioner.full_setup(account)
        return await provisioner.get_status(account)
    if args.command == "deploy":
        result = await provisioner.deploy(account)
        return vars(result)
    if args.command == "recover":
        recovered = await provisioner.recover(account, args.address)
        return await provisioner.get_status(recovered) if recovered else {"recovered": False}
    if args.command == "sync":
        return (await provisioner.sync_state(account, args.continue_setup)).to_dict()
    if args.command == "status":
        return await provisioner.get_status(account)
    if args.command == "approvals":
        account = await services.approvals.ensure(account, force=args.force)
        return await provisioner.get_status(account)
    if args.command == "verify-approvals":
        account = await services.approvals.verify(account)
        return await provisioner.get_status(account)
    if args.command == "reset-credentials":
        account = await services.credentials.reset(account)
        return await provisioner.get_status(account)
    if args.command == "order":
        order = await services.gateway.submit(account, OrderRequest(
            market_id=args.market,
            token_id=args.token,
            side=args.side,
            price=args.price,
            size=args.size,
            order_type=args.type,
            expiration=args.expiration,
        ))
        return vars(order)
    if args.command == "batch":
        with open(args.orders_file) as handle:
            requests = [OrderRequest(**item) for item in json.load(handle)]
        result = await services.batches.execute_batch(account, requests)
        return {
            "success": result.success,
            "error": result.error,
            "failedIndex": result.failed_index,
            "orders": [vars(order) for order in result.orders],
            "uncancelled": result.uncancelled_remote_ids,
        }
    if args.command == "cancel":
        return vars(await services.gateway.cancel(account, args.order_id))
    if args.command == "cancel-all":
        return [vars(order) for order in await services.gateway.cancel_all(account)]
    if args.command == "sync-orders":
        return [vars(order) for order in await services.gateway.sync_account_orders(account)]

    raise ValueError(f"Unknown command {args.command}")


async def main(argv=None) -> int:
    args = parse_arguments(argv)
    dotenv.load_dotenv(args.env_file)

    services = build_services(Settings())
    async with services:
        try:
            _print(await run_command(args, services))
        except CustodyError as e:
            logger.error(f"❌ {e.message}")
            _print({"error": e.message, "remediation": e.remediation, "context": e.context})
            return 1
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
