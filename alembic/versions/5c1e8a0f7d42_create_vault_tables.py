"""create oauth_credentials and oauth_flow_states

Revision ID: 5c1e8a0f7d42
Revises:
Create Date: 2026-10-19 09:12:44.318907

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1e8a0f7d42'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'oauth_credentials',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('provider_subject_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=True),
        sa.Column('email_verified', sa.Boolean(), nullable=True),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('scopes', sa.Text(), nullable=True),
        sa.Column('access_token_ciphertext', sa.LargeBinary(), nullable=False),
        sa.Column('refresh_token_ciphertext', sa.LargeBinary(), nullable=True),
        sa.Column('encryption_key_version', sa.Integer(), nullable=False),
        sa.Column('access_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    # One credential per (user, provider); one owner per provider identity
    op.create_index(
        'ix_oauth_credential_user_provider', 'oauth_credentials', ['user_id', 'provider'], unique=True
    )
    op.create_index(
        'ix_oauth_credential_provider_subject',
        'oauth_credentials',
        ['provider', 'provider_subject_id'],
        unique=True,
    )
    op.create_index(
        'ix_oauth_credential_expires_at', 'oauth_credentials', ['access_token_expires_at']
    )
    op.create_index(
        'ix_oauth_credential_key_version', 'oauth_credentials', ['encryption_key_version']
    )

    op.create_table(
        'oauth_flow_states',
        sa.Column('state_hash', sa.String(length=64), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('redirect_uri', sa.Text(), nullable=False),
        sa.Column('purpose', sa.String(length=16), nullable=False),
        sa.Column('purpose_user_id', sa.String(length=64), nullable=True),
        sa.Column('code_verifier', sa.String(length=128), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('state_hash'),
    )
    op.create_index('ix_oauth_flow_state_expires_at', 'oauth_flow_states', ['expires_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_oauth_flow_state_expires_at', table_name='oauth_flow_states')
    op.drop_table('oauth_flow_states')
    op.drop_index('ix_oauth_credential_key_version', table_name='oauth_credentials')
    op.drop_index('ix_oauth_credential_expires_at', table_name='oauth_credentials')
    op.drop_index('ix_oauth_credential_provider_subject', table_name='oauth_credentials')
    op.drop_index('ix_oauth_credential_user_provider', table_name='oauth_credentials')
    op.drop_table('oauth_credentials')
