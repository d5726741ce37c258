"""Repository for payment gateway configuration reads.

When several rows qualify for a lookup, the most recently updated row wins
(then the most recently created, then the greatest id) so that a duplicate
default or a duplicate active provider row resolves to a single row.
"""

import uuid
from typing import Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantpay.modules.payment_gateway.models import PaymentGatewayConfig

_TIE_BREAK = (
    PaymentGatewayConfig.updated_at.desc(),
    PaymentGatewayConfig.created_at.desc(),
    PaymentGatewayConfig.id.desc(),
)


class PaymentGatewayConfigRepository:
    """Read-only queries over payment gateway configuration rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_config(
        self,
        organization_id: str,
        provider: str,
    ) -> Optional[PaymentGatewayConfig]:
        """Get the organization's active configuration for a provider."""
        result = await self.session.execute(
            select(PaymentGatewayConfig)
            .where(
                and_(
                    PaymentGatewayConfig.organization_id == organization_id,
                    PaymentGatewayConfig.provider == provider,
                    PaymentGatewayConfig.is_active == True,
                )
            )
            .order_by(*_TIE_BREAK)
            .limit(1)
        )
        return result.scalars().first()

    async def get_default_config(self, organization_id: str) -> Optional[PaymentGatewayConfig]:
        """Get the organization's active default configuration."""
        result = await self.session.execute(
            select(PaymentGatewayConfig)
            .where(
                and_(
                    PaymentGatewayConfig.organization_id == organization_id,
                    PaymentGatewayConfig.is_default == True,
                    PaymentGatewayConfig.is_active == True,
                )
            )
            .order_by(*_TIE_BREAK)
            .limit(1)
        )
        return result.scalars().first()

    async def get_config_by_id(self, config_id: uuid.UUID) -> Optional[PaymentGatewayConfig]:
        """Get a configuration row by id, active or not."""
        return await self.session.get(PaymentGatewayConfig, config_id)

    async def list_active_configs(self, organization_id: str) -> list[PaymentGatewayConfig]:
        """List the organization's active configurations, default first."""
        result = await self.session.execute(
            select(PaymentGatewayConfig)
            .where(
                and_(
                    PaymentGatewayConfig.organization_id == organization_id,
                    PaymentGatewayConfig.is_active == True,
                )
            )
            .order_by(PaymentGatewayConfig.is_default.desc(), PaymentGatewayConfig.provider, *_TIE_BREAK)
        )
        return list(result.scalars().all())
