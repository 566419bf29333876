"""SQLAlchemy ORM models for durable behavior profiles."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Float, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class BehaviorProfileDB(Base):
    __tablename__ = "behavior_profiles"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    average_duration: Mapped[float] = mapped_column(Float, default=120.0)
    duration_std_dev: Mapped[float] = mapped_column(Float, default=0.0)
    total_transactions: Mapped[int] = mapped_column(Integer, default=0)
    amount_mean: Mapped[float] = mapped_column(Float, default=0.0)
    amount_std_dev: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_activity: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TransactionHistoryDB(Base):
    __tablename__ = "transaction_history"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    tx_type: Mapped[str] = mapped_column(String, default="transfer")
    amount: Mapped[float] = mapped_column(Float)
    to_address: Mapped[str] = mapped_column(String)
    token: Mapped[str] = mapped_column(String, default="ETH")
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    interaction_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    risk_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class KnownAddressDB(Base):
    __tablename__ = "known_addresses"
    __table_args__ = (UniqueConstraint("session_id", "address", name="uq_known_address"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String, index=True)
    address: Mapped[str] = mapped_column(String)
    interaction_count: Mapped[int] = mapped_column(Integer, default=1)
    first_interaction: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class WalletEmailDB(Base):
    __tablename__ = "wallet_emails"

    # SHA-256 of the wallet secret material, never the secret itself
    wallet_hash: Mapped[str] = mapped_column(String, primary_key=True)
    email: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
