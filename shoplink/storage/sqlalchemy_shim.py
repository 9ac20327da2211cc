"""
Shops and the experiences bound to them, stored with SQLAlchemy.

Deleting comes in two flavors that should not be confused:

soft delete: `deleted_at` is set, the row and its tokens stay around for
    audit and the shop comes back to life on the next install.
disconnect: the experience binding is removed and the shop row goes with it
    once nothing references it anymore.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import select
import zope.interface

from ..interfaces import ICredentialStore
from ..util import derive_shop_name

logger = logging.getLogger(__name__)


metadata = MetaData()


shops_table = Table(
    "shops",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("shop_domain", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=True),
    Column("admin_access_token", Text, nullable=False),
    Column("storefront_access_token", Text, nullable=True),
    # Whoever installed, as handed to us by the host.  Never validated.
    Column("creator", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)


experiences_table = Table(
    "experiences",
    metadata,
    # One shop per experience, many experiences per shop.
    Column("experience_id", String(255), primary_key=True),
    Column("shop_id", Integer, ForeignKey("shops.id"), nullable=False, index=True),
    Column("creator", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


def create_tables(engine):
    metadata.create_all(engine)


class ShopNotFoundError(LookupError):
    pass


@dataclass
class ShopRecord:
    shop_domain: str
    admin_access_token: str
    storefront_access_token: str = None
    name: str = None
    creator: object = None
    created_at: datetime = None
    updated_at: datetime = None
    deleted_at: datetime = None

    @classmethod
    def from_row(cls, row):
        return cls(
            shop_domain=row["shop_domain"],
            admin_access_token=row["admin_access_token"],
            storefront_access_token=row["storefront_access_token"],
            name=row["name"],
            creator=row["creator"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )


def _dialect_insert(db):
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


@zope.interface.implementer(ICredentialStore)
@dataclass
class SqlalchemyCredentialStore:
    """Store shop credentials and experience bindings with SQLAlchemy.

    Every operation runs in its own transaction.
    """

    session_factory: sessionmaker
    shops: Table = shops_table
    experiences: Table = experiences_table
    utcnow: Callable = field(default=lambda: datetime.now(timezone.utc))

    def _active_shop_where(self, shop_domain):
        return (self.shops.c.shop_domain == shop_domain) & (
            self.shops.c.deleted_at.is_(None)
        )

    def _bound_shop_query(self, experience_id):
        return (
            select(self.shops)
            .join(self.experiences, self.experiences.c.shop_id == self.shops.c.id)
            .where(self.experiences.c.experience_id == experience_id)
            .where(self.shops.c.deleted_at.is_(None))
        )

    def save_shop(
        self,
        shop_domain,
        admin_access_token,
        storefront_access_token=None,
        name=None,
        creator=None,
    ):
        """Insert or update the shop, reviving it if it was soft deleted.

        Fields left as None keep whatever value is already stored.
        """
        now = self.utcnow()
        updates = dict(
            admin_access_token=admin_access_token,
            updated_at=now,
            deleted_at=None,
        )
        if storefront_access_token is not None:
            updates["storefront_access_token"] = storefront_access_token
        if name is not None:
            updates["name"] = name
        if creator is not None:
            updates["creator"] = creator
        values = dict(
            updates,
            shop_domain=shop_domain,
            name=name or derive_shop_name(shop_domain),
            created_at=now,
        )
        with self.session_factory.begin() as db:
            insert = _dialect_insert(db)
            db.execute(
                insert(self.shops)
                .values(**values)
                .on_conflict_do_update(
                    index_elements=[self.shops.c.shop_domain], set_=updates
                )
            )
            row = (
                db.execute(
                    select(self.shops).where(self.shops.c.shop_domain == shop_domain)
                )
                .mappings()
                .first()
            )
            return ShopRecord.from_row(row)

    def get_shop(self, shop_domain):
        with self.session_factory() as db:
            row = (
                db.execute(select(self.shops).where(self._active_shop_where(shop_domain)))
                .mappings()
                .first()
            )
            return ShopRecord.from_row(row) if row else None

    def get_shop_including_deleted(self, shop_domain):
        """Privileged read that also sees soft deleted shops."""
        with self.session_factory() as db:
            row = (
                db.execute(
                    select(self.shops).where(self.shops.c.shop_domain == shop_domain)
                )
                .mappings()
                .first()
            )
            return ShopRecord.from_row(row) if row else None

    def _delete_shop_if_unbound(self, db, shop_id):
        remaining = db.execute(
            select(func.count())
            .select_from(self.experiences)
            .where(self.experiences.c.shop_id == shop_id)
        ).scalar()
        if remaining:
            return False
        db.execute(self.shops.delete().where(self.shops.c.id == shop_id))
        return True

    def save_experience_mapping(self, experience_id, shop_domain, creator=None):
        """Bind the experience to the shop, moving it if it was bound elsewhere.

        A None `creator` keeps the one already on the binding.  A shop left
        with no experiences after a move is removed, as on disconnect.
        """
        with self.session_factory.begin() as db:
            shop_id = db.execute(
                select(self.shops.c.id).where(self._active_shop_where(shop_domain))
            ).scalar()
            if shop_id is None:
                raise ShopNotFoundError(f"Shop {shop_domain} not found")
            previous_shop_id = db.execute(
                select(self.experiences.c.shop_id).where(
                    self.experiences.c.experience_id == experience_id
                )
            ).scalar()
            updates = dict(shop_id=shop_id)
            if creator is not None:
                updates["creator"] = creator
            insert = _dialect_insert(db)
            db.execute(
                insert(self.experiences)
                .values(
                    experience_id=experience_id,
                    shop_id=shop_id,
                    creator=creator,
                    created_at=self.utcnow(),
                )
                .on_conflict_do_update(
                    index_elements=[self.experiences.c.experience_id],
                    set_=updates,
                )
            )
            if previous_shop_id is not None and previous_shop_id != shop_id:
                if self._delete_shop_if_unbound(db, previous_shop_id):
                    logger.info(
                        f"Removed shop {previous_shop_id}, {experience_id} moved away"
                    )

    def get_shop_by_experience(self, experience_id):
        with self.session_factory() as db:
            row = db.execute(self._bound_shop_query(experience_id)).mappings().first()
            return ShopRecord.from_row(row) if row else None

    def soft_delete_shop(self, experience_id):
        with self.session_factory.begin() as db:
            row = db.execute(self._bound_shop_query(experience_id)).mappings().first()
            if not row:
                return {"success": False, "message": "Shop not found or already deleted"}
            now = self.utcnow()
            db.execute(
                self.shops.update()
                .where(self.shops.c.id == row["id"])
                .values(deleted_at=now, updated_at=now)
            )
            shop_domain = row["shop_domain"]
        logger.info(f"Soft deleted shop {shop_domain} for experience {experience_id}")
        return {
            "success": True,
            "message": f"Shop {shop_domain} has been closed",
            "shop_domain": shop_domain,
        }

    def soft_delete_shop_by_domain(self, shop_domain):
        """Mark the shop deleted, returns False if there was no active shop."""
        now = self.utcnow()
        with self.session_factory.begin() as db:
            result = db.execute(
                self.shops.update()
                .where(self._active_shop_where(shop_domain))
                .values(deleted_at=now, updated_at=now)
            )
            return result.rowcount > 0

    def disconnect_shop(self, experience_id):
        with self.session_factory.begin() as db:
            shop_row = (
                db.execute(
                    select(self.shops.c.id, self.shops.c.shop_domain)
                    .join(
                        self.experiences,
                        self.experiences.c.shop_id == self.shops.c.id,
                    )
                    .where(self.experiences.c.experience_id == experience_id)
                )
                .mappings()
                .first()
            )
            if not shop_row:
                return {
                    "success": False,
                    "message": f"No shop found for experience {experience_id}",
                }
            db.execute(
                self.experiences.delete().where(
                    self.experiences.c.experience_id == experience_id
                )
            )
            if self._delete_shop_if_unbound(db, shop_row["id"]):
                logger.info(f"Removed shop {shop_row['shop_domain']}, no experiences left")
        return {
            "success": True,
            "message": f"Disconnected shop {shop_row['shop_domain']}",
        }

    def update_shop_name(self, experience_id, name):
        name = (name or "").strip()
        if not name:
            return {"success": False, "message": "Name cannot be empty", "name": None}
        with self.session_factory.begin() as db:
            row = db.execute(self._bound_shop_query(experience_id)).mappings().first()
            if not row:
                return {"success": False, "message": "Shop not found", "name": None}
            db.execute(
                self.shops.update()
                .where(self.shops.c.id == row["id"])
                .values(name=name, updated_at=self.utcnow())
            )
        return {"success": True, "message": f"Shop renamed to {name}", "name": name}
