"""
UserRecordStore: read/update the entitlement projection of a user.

Every write is a single conditional UPDATE (compare-and-set on the fields the
caller read), so a downgrade and a concurrent link/unlink never overwrite each other.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from academy_gate.access.models import AccountType, EntitlementRecord, SubscriptionStatus
from academy_gate.core.errors import IdentityAlreadyLinked, PreconditionFailed, UserNotFound
from academy_gate.models.user import User

logger = logging.getLogger(__name__)


class UserRecordStore(ABC):
    """Interface for entitlement record access"""

    @abstractmethod
    def get(self, user_id: str) -> EntitlementRecord | None:
        """Get record by user ID"""

    @abstractmethod
    def find_by_external_identity(self, external_identity_id: str) -> EntitlementRecord | None:
        """Get the record currently linked to an external identity"""

    @abstractmethod
    def update(self, user_id: str, precondition: dict[str, Any], fields: dict[str, Any]) -> None:
        """
        Conditional write.

        Raises PreconditionFailed if any precondition field no longer holds the
        given value, UserNotFound if the record is gone.
        """

    @abstractmethod
    def iter_linked(self, batch_size: int = 500) -> Iterator[tuple[str, str]]:
        """Yield (user_id, external_identity_id) for every linked user"""


# Record field -> users column
_COLUMNS = {
    "account_type": User.account_type,
    "subscription_status": User.subscription_status,
    "external_billing_ref": User.stripe_subscription_id,
    "current_period_end": User.current_period_end,
    "external_identity_id": User.discord_id,
    "external_identity_token": User.discord_access_token,
}


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _column(field: str):
    try:
        return _COLUMNS[field]
    except KeyError:
        raise ValueError(f"unknown entitlement field: {field}") from None


def _parse_status(user: User) -> SubscriptionStatus | None:
    if user.subscription_status is None:
        return None
    try:
        return SubscriptionStatus(user.subscription_status)
    except ValueError:
        logger.warning(
            "unknown_subscription_status",
            extra={"user_id": user.id, "subscription_status": user.subscription_status},
        )
        return None


def to_record(user: User) -> EntitlementRecord:
    return EntitlementRecord(
        id=user.id,
        account_type=AccountType.ADMIN if user.account_type == AccountType.ADMIN.value else AccountType.STANDARD,
        subscription_status=_parse_status(user),
        external_billing_ref=user.stripe_subscription_id,
        current_period_end=user.current_period_end,
        external_identity_id=user.discord_id,
        external_identity_token=user.discord_access_token,
        email=user.email,
        display_name=user.display_name,
    )


class SqlUserRecordStore(UserRecordStore):
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> EntitlementRecord | None:
        user = self.db.query(User).filter(User.id == user_id).one_or_none()
        return to_record(user) if user else None

    def find_by_external_identity(self, external_identity_id: str) -> EntitlementRecord | None:
        user = self.db.query(User).filter(User.discord_id == external_identity_id).one_or_none()
        return to_record(user) if user else None

    def update(self, user_id: str, precondition: dict[str, Any], fields: dict[str, Any]) -> None:
        conditions = [User.id == user_id]
        for field, expected in precondition.items():
            column = _column(field)
            expected = _db_value(expected)
            conditions.append(column.is_(None) if expected is None else column == expected)

        values = {_column(field).key: _db_value(value) for field, value in fields.items()}
        values["updated_at"] = datetime.now(timezone.utc)

        stmt = (
            update(User)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            external_id = fields.get("external_identity_id")
            if external_id is None:
                raise
            raise IdentityAlreadyLinked(external_id)

        if result.rowcount == 0:
            exists = self.db.query(User.id).filter(User.id == user_id).one_or_none()
            if exists is None:
                raise UserNotFound(user_id)
            raise PreconditionFailed(user_id, precondition)

    def iter_linked(self, batch_size: int = 500) -> Iterator[tuple[str, str]]:
        last_id = ""
        while True:
            rows = (
                self.db.query(User.id, User.discord_id)
                .filter(User.discord_id.isnot(None), User.id > last_id)
                .order_by(User.id)
                .limit(batch_size)
                .all()
            )
            if not rows:
                return
            for user_id, discord_id in rows:
                yield user_id, discord_id
            last_id = rows[-1][0]
