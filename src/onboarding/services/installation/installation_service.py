# onboarding/services/installation/installation_service.py

import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.parse import urlencode
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.config import settings
from onboarding.core.context import AppContext
from onboarding.core.security import check_timestamp, constant_time_equals, verify_hmac
from onboarding.dao.installation.installation_dao import InstallationDao
from onboarding.db.session import SessionLocal
from onboarding.models.installation import TenantInstallation, InstallationStatus
from onboarding.schemas.installation_schemas import HandshakePayload, AuthorizationResult
from onboarding.services.exceptions import (
    ValidationError, UnauthorizedError, InternalError, ServiceException
)
from onboarding.services.schema.ddl_builder import DDLBuilder
from onboarding.services.schema.table_registry import SHOP_INFO_TABLE
from onboarding.utils.id_generator import generate_installation_token, generate_state

logger = logging.getLogger(__name__)

class InstallationService:
    """
    Drives a storefront from an unsigned installation request to an
    authorized, provisioned tenant.

    installing -> authorized, and installing/authorized -> failed when
    authorization hits an unrecoverable error. Re-installation moves any
    state back to installing.
    """

    def __init__(self, context: AppContext, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self.context = context
        self.db = context.db
        self.dao = InstallationDao(context.db)
        self.provisioner = context.provisioner
        self.provider = context.provider
        self.tenant_router = context.tenant_router
        # failure marking must survive the rollback of the request transaction
        self.session_factory = session_factory or SessionLocal

    # ==============================================================================
    # 1. Installation
    # ==============================================================================

    async def start_installation(self, handshake: HandshakePayload) -> TenantInstallation:
        if not handshake.fingerprint:
            raise ValidationError("Fingerprint is required", code="fingerprint_required")

        record = await self.dao.get_by_shop(handshake.shop)
        if (
            record is not None
            and record.status == InstallationStatus.AUTHORIZED
            and await self.provider.is_installation_active(record.shop_code)
        ):
            return record

        now = datetime.now(timezone.utc)
        if record is None:
            record, created = await self.dao.create_with_unique_code({
                "shop": handshake.shop,
                "host": handshake.host,
                "hmac": handshake.hmac,
                "timestamp": handshake.timestamp,
                "status": InstallationStatus.INSTALLING,
                "installation_started_at": now,
                "installation_token": generate_installation_token(),
                "note": handshake.note,
                "fingerprint": handshake.fingerprint,
            })
            if created:
                logger.info("Installation started for new shop '%s' with code %s.", record.shop, record.shop_code)
                return record

        # re-installation: keep the code, rotate the token only for a new client
        rotate_token = not record.installation_token or record.fingerprint != handshake.fingerprint
        record.host = handshake.host
        record.hmac = handshake.hmac
        record.timestamp = handshake.timestamp
        record.status = InstallationStatus.INSTALLING
        record.installation_started_at = now
        record.note = handshake.note or ""
        record.fingerprint = handshake.fingerprint
        if rotate_token:
            record.installation_token = generate_installation_token()
        await self.db.flush()

        logger.info(
            "Re-installation started for shop '%s' (%s), token %s.",
            record.shop, record.shop_code, "rotated" if rotate_token else "kept"
        )
        return record

    # ==============================================================================
    # 2. Authentication
    # ==============================================================================

    async def authenticate(self, shop_code: Optional[str], bearer_token: Optional[str]) -> TenantInstallation:
        if not shop_code:
            raise UnauthorizedError("x-shop-code header is required", code="missing_shop_code")
        if not bearer_token:
            raise UnauthorizedError("Bearer token is required", code="missing_token")

        record = await self.dao.get_by_code(shop_code)
        if record is None:
            raise UnauthorizedError("Invalid shop code", code="invalid_shop_code")
        if not constant_time_equals(record.installation_token, bearer_token):
            raise UnauthorizedError("Token does not match the installed client", code="invalid_token")
        return record

    # ==============================================================================
    # 3. Authorization
    # ==============================================================================

    async def authorize(
        self,
        handshake: HandshakePayload,
        shop_code: Optional[str],
        bearer_token: Optional[str]
    ) -> AuthorizationResult:
        record = await self.authenticate(shop_code, bearer_token)

        check_timestamp(handshake.timestamp)
        if not verify_hmac(handshake.model_dump(), handshake.hmac):
            raise UnauthorizedError("Invalid HMAC signature", code="invalid_hmac")
        # a record without a fingerprint can never be authorized
        if not constant_time_equals(record.fingerprint, handshake.fingerprint):
            raise UnauthorizedError("Fingerprint mismatch - installation token invalid", code="fingerprint_mismatch")
        if handshake.shop != record.shop:
            raise UnauthorizedError("Shop does not match the installation", code="shop_mismatch")

        logger.info("Processing authorization for shop '%s' (%s).", record.shop, record.shop_code)

        if not handshake.code:
            return self._redirect_directive(record, handshake)

        try:
            access_token = await self.provider.exchange_code(record.shop, handshake.code)
            await self.provisioner.provision_and_record(record.shop_code)
            await self._store_access_token(record, access_token)
        except Exception as e:
            logger.error("Authorization failed for shop '%s' (%s): %s", record.shop, record.shop_code, e, exc_info=True)
            await self._mark_failed(record.shop_code, e)
            raise InternalError("Internal server error during authorization") from e

        now = datetime.now(timezone.utc)
        record.status = InstallationStatus.AUTHORIZED
        record.authorization_completed_at = now
        await self.db.flush()
        logger.info("Shop '%s' (%s) authorized.", record.shop, record.shop_code)

        return AuthorizationResult(
            status="authorized",
            shop=record.shop,
            shop_code=record.shop_code,
            authorized_at=now,
            redirect_url=f"{settings.FRONTEND_URL.rstrip('/')}/dashboard?{urlencode({'shop': record.shop})}",
        )

    def _redirect_directive(self, record: TenantInstallation, handshake: HandshakePayload) -> AuthorizationResult:
        state = handshake.state or generate_state()
        auth_url = self.provider.build_authorize_url(record.shop, state, handshake.scope)
        return AuthorizationResult(
            status="redirect_required",
            shop=record.shop,
            shop_code=record.shop_code,
            auth_url=auth_url,
            state=state,
        )

    async def _store_access_token(self, record: TenantInstallation, access_token: str) -> None:
        """Upserts the provider token into the tenant's own shop_info row."""
        shop_info = DDLBuilder().sa_table(SHOP_INFO_TABLE)
        stmt = pg_insert(shop_info).values(
            shop_code=record.shop_code,
            shop_domain=record.shop,
            access_token=access_token,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[shop_info.c.shop_code],
            set_={
                "shop_domain": stmt.excluded.shop_domain,
                "access_token": stmt.excluded.access_token,
            },
        )
        async with self.tenant_router.session(record.shop_code) as session:
            await session.execute(stmt)
        logger.info("Access token saved for shop '%s' in its tenant schema.", record.shop)

    async def _mark_failed(self, shop_code: str, error: Exception) -> None:
        note = error.message if isinstance(error, ServiceException) else type(error).__name__
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await InstallationDao(session).set_status(
                        shop_code, InstallationStatus.FAILED, note=f"Authorization failed: {note}"
                    )
        except Exception:
            # the original failure is what the caller needs to see
            logger.exception("Could not mark installation %s as failed.", shop_code)
