"""create tenant installations

Revision ID: 3f8a2d6c1b07
Revises:
Create Date: 2026-03-09 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f8a2d6c1b07'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

installation_status = sa.Enum('installing', 'authorized', 'failed', name='installation_status')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'tenant_installations',
        sa.Column('shop_code', sa.String(length=20), nullable=False, comment='Opaque tenant code, immutable once assigned'),
        sa.Column('shop', sa.String(length=255), nullable=False, comment='External shop domain, e.g. acme.myshopify.com'),
        sa.Column('host', sa.String(length=255), nullable=False),
        sa.Column('hmac', sa.String(length=64), nullable=True),
        sa.Column('timestamp', sa.String(length=20), nullable=False),
        sa.Column('status', installation_status, nullable=False),
        sa.Column('note', sa.String(length=1000), nullable=True),
        sa.Column('installation_token', sa.String(length=255), nullable=True, comment='Secret bound to the installing client'),
        sa.Column('fingerprint', sa.String(length=64), nullable=True, comment='Client fingerprint the token is bound to'),
        sa.Column('installation_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('authorization_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('shop_code', name=op.f('pk_tenant_installations')),
        sa.UniqueConstraint('shop', name=op.f('uq_tenant_installations_shop')),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('tenant_installations')
    installation_status.drop(op.get_bind(), checkfirst=True)
