"""Upsert the configured system accounts (admin / PM) into ``users``."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import SystemAccount, settings
from src.domain.enums import UserRole
from src.infrastructure.models import UserModel
from src.infrastructure.repositories import UserRepository
from src.services.fleet import hash_password, verify_password

logger = logging.getLogger(__name__)


async def ensure_system_accounts(
    session: AsyncSession, accounts: Iterable[SystemAccount]
) -> list[UserModel]:
    """Create or refresh each account, matched by email.

    Accounts end up with ``is_hardcoded=True`` so the user endpoints
    refuse to edit or delete them.  The caller commits.
    """
    repo = UserRepository(session)
    result: list[UserModel] = []
    for account in accounts:
        email = account.email.strip().lower()
        user = await repo.get_by_email(email)
        if user is None:
            user = await repo.create(
                UserModel(
                    name=account.name,
                    email=email,
                    phone=account.phone,
                    password_hash=hash_password(
                        account.password, settings.bcrypt_rounds
                    ),
                    role=UserRole(account.role),
                    is_hardcoded=True,
                )
            )
            logger.info("System account %s created (%s)", email, account.role)
        else:
            user.name = account.name
            user.role = UserRole(account.role)
            user.is_hardcoded = True
            if not verify_password(account.password, user.password_hash):
                user.password_hash = hash_password(
                    account.password, settings.bcrypt_rounds
                )
        result.append(user)
    await session.flush()
    return result
