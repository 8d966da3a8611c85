from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from academy_gate.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    account_type = Column(String, nullable=False, default="STANDARD")  # STANDARD | ADMIN

    # NB: written by billing webhooks, admin scripts and the lazy downgrade only.
    subscription_status = Column(String, nullable=True)
    # Present = billing provider manages renewal. Absent = installment plan, admin-managed.
    stripe_subscription_id = Column(String, nullable=True)
    # Last valid instant of a manually granted period. Kept after downgrade as history.
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    # Linked guild identity: both set or both null.
    discord_id = Column(String, unique=True, nullable=True, index=True)
    discord_access_token = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or (self.email or self.id)
