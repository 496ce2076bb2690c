# shop_hub/cli.py
"""
Admin command line.

    python -m shop_hub.cli init-db
    python -m shop_hub.cli create-user --email staff@example.com --name "Staff" --role staff
    python -m shop_hub.cli create-category --name Electronics --prefix ELEC
"""
from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from sqlalchemy import select

from shop_hub.database import create_all, close_db, get_session_context
from shop_hub.db_models import User, UserRole
from shop_hub.errors import ShopError
from shop_hub.logging_setup import setup_logging
from shop_hub.models import CategoryIn
from shop_hub.services.catalog import CategoryService
from shop_hub.settings import settings

log = logging.getLogger("shop_hub.cli")


async def _init_db(args) -> str:
    await create_all()
    return "Tables created"


async def _create_user(args) -> str:
    email = args.email.strip().lower()
    async with get_session_context() as db:
        existing = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        if existing is not None:
            raise ShopError(f"User already exists: {email} (id={existing.id})", code="DUPLICATE_USER")
        user = User(email=email, full_name=args.name, phone=args.phone, role=UserRole(args.role))
        db.add(user)
        await db.flush()
        log.info("User created id=%s email=%s role=%s", user.id, user.email, user.role.value)
        return f"User created: id={user.id} email={user.email} role={user.role.value}"


async def _create_category(args) -> str:
    async with get_session_context() as db:
        category = await CategoryService(db).create(
            CategoryIn(name=args.name, prefix=args.prefix, description=args.description)
        )
        return f"Category created: id={category.id} name={category.name} prefix={category.prefix or '-'}"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="shop_hub.cli", description="Shop Hub administration")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create all tables")
    p.set_defaults(func=_init_db)

    p = sub.add_parser("create-user", help="Create a user (customer / staff / admin)")
    p.add_argument("--email", required=True)
    p.add_argument("--name", required=True, help="Full name")
    p.add_argument("--phone", default=None)
    p.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.customer.value)
    p.set_defaults(func=_create_user)

    p = sub.add_parser("create-category", help="Create a product category")
    p.add_argument("--name", required=True)
    p.add_argument("--prefix", default=None, help="SKU prefix, 2-4 uppercase letters")
    p.add_argument("--description", default=None)
    p.set_defaults(func=_create_category)

    return ap


async def _run(args) -> str:
    try:
        return await args.func(args)
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(settings)
    try:
        print(asyncio.run(_run(args)))
    except ShopError as e:
        print(f"error: {e.code}: {e.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
