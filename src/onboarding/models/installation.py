# onboarding/models/installation.py

import enum
from sqlalchemy import Column, String, DateTime, Enum as PgEnum, func
from onboarding.db.base import Base

class InstallationStatus(str, enum.Enum):
    INSTALLING = "installing"
    AUTHORIZED = "authorized"
    FAILED = "failed"

class TenantInstallation(Base):
    """
    One row per storefront attempting onboarding.
    Created on the first installation request for a domain, mutated in place
    on re-installation, never hard-deleted.
    """
    __tablename__ = 'tenant_installations'

    # Assigned exactly once by the insert-and-retry loop in InstallationDao
    shop_code = Column(String(20), primary_key=True, comment="Opaque tenant code, immutable once assigned")
    shop = Column(String(255), nullable=False, unique=True, comment="External shop domain, e.g. acme.myshopify.com")

    # --- Handshake metadata of the latest installation request ---
    host = Column(String(255), nullable=False)
    hmac = Column(String(64), nullable=True)
    timestamp = Column(String(20), nullable=False)

    status = Column(
        PgEnum(InstallationStatus, values_callable=lambda e: [m.value for m in e], name="installation_status"),
        nullable=False,
        default=InstallationStatus.INSTALLING
    )
    note = Column(String(1000), nullable=True)

    installation_token = Column(String(255), nullable=True, comment="Secret bound to the installing client")
    fingerprint = Column(String(64), nullable=True, comment="Client fingerprint the token is bound to")

    installation_started_at = Column(DateTime(timezone=True), nullable=True)
    authorization_completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # fetch server-generated timestamps on flush instead of lazy-loading them
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return f"<TenantInstallation {self.shop_code} {self.shop} {self.status}>"
