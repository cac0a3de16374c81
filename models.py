"""
Payment Gateway - Database Schema
=================================

Schema for the order-intake core of the payment gateway:
- Wallets: one account record per (payment method, external user)
- Derived wallets: settlement-method deposit addresses minted under a wallet
- Orders: one settlement unit per external order id, keyed for idempotency
- Txs: the inbound and outbound legs of an order

Uniqueness constraints here are what the "catch IntegrityError, then re-read"
idempotency paths in the services rely on.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from sqlalchemy import (
    Integer, String, Numeric, DateTime, Text,
    ForeignKey, UniqueConstraint, Index, CheckConstraint, func
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class OrderFlow(Enum):
    """Direction of an order"""
    IN = "IN"    # Deposit: settlement-chain funds arrive at a derived wallet
    OUT = "OUT"  # Payout: funds leave through the hot wallet


def generate_job_id() -> str:
    """Queue job identifier assigned to an order at insert time"""
    return uuid.uuid4().hex


# ============================================================================
# MODELS
# ============================================================================

class Wallet(Base):
    """Payment-method account for one external user"""
    __tablename__ = 'wallets'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    payment: Mapped[str] = mapped_column(String(32), nullable=False)
    invoice: Mapped[str] = mapped_column(String(255), nullable=False)  # User-facing identifier

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    derived_wallets: Mapped[List["DerivedWallet"]] = relationship(
        "DerivedWallet", back_populates="wallet", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint('payment', 'invoice', name='uq_wallet_payment_invoice'),
    )
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return f"<Wallet id={self.id} payment={self.payment} invoice={self.invoice}>"


class DerivedWallet(Base):
    """Settlement-method address minted under a wallet"""
    __tablename__ = 'derived_wallets'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey('wallets.id', ondelete='CASCADE'), nullable=False, index=True
    )

    payment: Mapped[str] = mapped_column(String(32), nullable=False)
    invoice: Mapped[str] = mapped_column(String(255), nullable=False)  # Derived address

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="derived_wallets")

    __table_args__ = (
        UniqueConstraint('payment', 'invoice', name='uq_derived_wallet_payment_invoice'),
        # A wallet gets at most one derived address per settlement method
        UniqueConstraint('wallet_id', 'payment', name='uq_derived_wallet_wallet_payment'),
    )
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return f"<DerivedWallet id={self.id} wallet_id={self.wallet_id} payment={self.payment} invoice={self.invoice}>"


class Tx(Base):
    """One leg (inbound or outbound) of an order"""
    __tablename__ = 'txs'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    coin: Mapped[str] = mapped_column(String(32), nullable=False)
    tx_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)  # Chain transaction id
    from_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    to_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(38, 18), nullable=True)
    tx_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_confirmations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('confirmations >= 0', name='ck_tx_confirmations_positive'),
        CheckConstraint('max_confirmations >= 0', name='ck_tx_max_confirmations_positive'),
    )
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return f"<Tx id={self.id} coin={self.coin} tx_id={self.tx_id} to={self.to_address}>"


class Order(Base):
    """Settlement unit with one inbound and one outbound leg"""
    __tablename__ = 'orders'

    # Caller-supplied external order id (idempotency anchor)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    type: Mapped[str] = mapped_column(String(64), nullable=False)
    flow: Mapped[str] = mapped_column(String(8), nullable=False)
    job_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, default=generate_job_id)

    # Set for IN orders, null for OUT orders
    wallet_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey('wallets.id'), nullable=True, index=True
    )
    in_tx_id: Mapped[int] = mapped_column(Integer, ForeignKey('txs.id'), unique=True, nullable=False)
    out_tx_id: Mapped[int] = mapped_column(Integer, ForeignKey('txs.id'), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    in_tx: Mapped["Tx"] = relationship(
        "Tx", foreign_keys=[in_tx_id], cascade="all, delete-orphan", single_parent=True, lazy="joined"
    )
    out_tx: Mapped["Tx"] = relationship(
        "Tx", foreign_keys=[out_tx_id], cascade="all, delete-orphan", single_parent=True, lazy="joined"
    )

    __table_args__ = (
        CheckConstraint(
            f"flow IN ('{OrderFlow.IN.value}', '{OrderFlow.OUT.value}')", name='ck_order_flow_valid'
        ),
        Index('ix_orders_flow_created', 'flow', 'created_at'),
    )
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return f"<Order id={self.id} flow={self.flow} job_id={self.job_id}>"
