"""
Account store and account-entity binding.

An account is a login identity. It may exist without a profile entity and
an entity may exist without an account; the nullable accounts.entity_id
links them once both exist.

Invariants:
    - Emails are unique (stored trimmed and lower-cased)
    - find_or_create_entity_for_account() creates at most one entity per
      account: the lookup and the bind run in one write transaction
    - Deleting an entity unbinds its account (ON DELETE SET NULL)
"""

from __future__ import annotations

import logging
import sqlite3
import uuid

from ..errors import ConflictError, NotFoundError
from ..schema.types import AccountRole
from .database import Database, now_ms
from .entities import fetch_entity, insert_entity
from .records import Account, Entity

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _fetch_account(conn: sqlite3.Connection, account_id: str) -> Account | None:
    row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
    return Account.from_row(row) if row else None


class AccountStore:
    """Login accounts and their optional profile entity."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        email: str,
        password_hash: str,
        role: AccountRole | str,
        entity_id: str | None = None,
        must_change_password: bool = False,
        temp_password: str | None = None,
    ) -> Account:
        """Create an account.

        Raises:
            ConflictError: If the email is already in use
            ValidationError: If role is not a known role
            NotFoundError: If entity_id is given and does not exist
        """
        normalized = _normalize_email(email)
        role = AccountRole.from_str(role)
        now = now_ms()
        account = Account(
            id=str(uuid.uuid4()),
            email=normalized,
            password_hash=password_hash,
            role=role.value,
            is_active=True,
            must_change_password=must_change_password,
            temp_password=temp_password,
            last_login=None,
            entity_id=entity_id,
            created_at=now,
            updated_at=now,
        )

        with self.db.transaction("create_account") as conn:
            if conn.execute("SELECT 1 FROM accounts WHERE email = ?", (normalized,)).fetchone():
                raise ConflictError("Email already in use", key="email")
            if entity_id and fetch_entity(conn, entity_id, with_values=False) is None:
                raise NotFoundError("Entity", entity_id)
            try:
                conn.execute(
                    """
                    INSERT INTO accounts
                    (id, email, password_hash, role, is_active, must_change_password,
                     temp_password, last_login, entity_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 1, ?, ?, NULL, ?, ?, ?)
                    """,
                    (
                        account.id,
                        normalized,
                        password_hash,
                        account.role,
                        1 if must_change_password else 0,
                        temp_password,
                        entity_id,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError("Email already in use", key="email") from e

        logger.debug("Created account", extra={"account_id": account.id, "role": account.role})
        return account

    async def get(self, account_id: str) -> Account | None:
        with self.db.connect("get_account") as conn:
            return _fetch_account(conn, account_id)

    async def get_by_email(self, email: str) -> Account | None:
        with self.db.connect("get_account_by_email") as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE email = ?", (_normalize_email(email),)
            ).fetchone()
        return Account.from_row(row) if row else None

    async def record_login(self, account_id: str) -> Account:
        """Stamp last_login with the current time.

        Raises:
            NotFoundError: If the account does not exist
        """
        now = now_ms()
        with self.db.transaction("record_login") as conn:
            account = _fetch_account(conn, account_id)
            if account is None:
                raise NotFoundError("Account", account_id)
            conn.execute(
                "UPDATE accounts SET last_login = ?, updated_at = ? WHERE id = ?",
                (now, now, account_id),
            )
        account.last_login = now
        account.updated_at = now
        return account

    async def bind_account_to_entity(self, account_id: str, entity_id: str) -> Account:
        """Point an account at a profile entity, replacing any previous binding.

        Raises:
            NotFoundError: If the account or the entity does not exist
        """
        with self.db.transaction("bind_account") as conn:
            account = _fetch_account(conn, account_id)
            if account is None:
                raise NotFoundError("Account", account_id)
            if fetch_entity(conn, entity_id, with_values=False) is None:
                raise NotFoundError("Entity", entity_id)
            account.entity_id = entity_id
            account.updated_at = now_ms()
            conn.execute(
                "UPDATE accounts SET entity_id = ?, updated_at = ? WHERE id = ?",
                (entity_id, account.updated_at, account_id),
            )

        logger.debug(
            "Bound account to entity",
            extra={"account_id": account_id, "entity_id": entity_id},
        )
        return account

    async def find_or_create_entity_for_account(
        self,
        account_id: str,
        entity_type: str,
        name: str | None = None,
    ) -> tuple[Entity, bool]:
        """Return the account's bound entity, creating and binding one if absent.

        Returns:
            (entity, created) where created is True only on the first call

        Raises:
            NotFoundError: If the account does not exist
        """
        with self.db.transaction("find_or_create_account_entity") as conn:
            account = _fetch_account(conn, account_id)
            if account is None:
                raise NotFoundError("Account", account_id)

            if account.entity_id:
                entity = fetch_entity(conn, account.entity_id)
                if entity is not None:
                    return entity, False

            entity = insert_entity(conn, entity_type, name=name)
            conn.execute(
                "UPDATE accounts SET entity_id = ?, updated_at = ? WHERE id = ?",
                (entity.id, now_ms(), account_id),
            )

        logger.info(
            "Created entity for account",
            extra={"account_id": account_id, "entity_id": entity.id, "type": entity.type},
        )
        return entity, True
