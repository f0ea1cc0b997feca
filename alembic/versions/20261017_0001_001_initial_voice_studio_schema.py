"""Initial schema - users, agent configs, telephony, OAuth, knowledge base

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-17

Creates the tables previously created via init_db.py.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, index=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Agent configs
    op.create_table(
        'agent_configs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('instructions', sa.Text, nullable=False),
        sa.Column('voice', sa.String(100), nullable=False, server_default='ash'),
        sa.Column('voice_instructions', sa.Text, nullable=True),
        sa.Column('greeting', sa.Text, nullable=True),
        sa.Column('model', sa.String(50), nullable=False, server_default='gpt-4.1-mini'),
        sa.Column('stt_model', sa.String(100), nullable=False, server_default='openai/gpt-4o-transcribe'),
        sa.Column('tts_model', sa.String(100), nullable=False, server_default='openai/gpt-4o-mini-tts'),
        sa.Column('tools', sa.JSON, nullable=False),
        sa.Column('is_public', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('share_code', sa.String(16), unique=True, nullable=True),
        sa.Column('enable_knowledge_base', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now(), onupdate=sa.func.now()),
    )
    op.create_index('ix_agent_configs_user_created', 'agent_configs', ['user_id', 'created_at'])

    # Telephony (one per agent)
    op.create_table(
        'telephony_configs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_config_id', sa.String(36), sa.ForeignKey('agent_configs.id', ondelete='CASCADE'),
                  unique=True, index=True, nullable=False),
        sa.Column('phone_number', sa.String(20), nullable=False),
        sa.Column('exophone_sid', sa.String(100), nullable=False),
        sa.Column('inbound_trunk_id', sa.String(100), nullable=False),
        sa.Column('outbound_trunk_id', sa.String(100), nullable=True),
        sa.Column('sip_domain', sa.String(255), nullable=False),
        sa.Column('dispatch_rule_id', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # OAuth connections
    op.create_table(
        'oauth_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('access_token', sa.Text, nullable=False),
        sa.Column('refresh_token', sa.Text, nullable=True),
        sa.Column('expires_at', sa.DateTime, nullable=True),
        sa.Column('scope', sa.Text, nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint('user_id', 'provider', name='uq_oauth_connections_user_provider'),
    )

    # Knowledge-base documents
    op.create_table(
        'knowledge_base_documents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_config_id', sa.String(36), sa.ForeignKey('agent_configs.id', ondelete='CASCADE'),
                  index=True, nullable=False),
        sa.Column('document_name', sa.String(255), nullable=False),
        sa.Column('document_type', sa.String(10), nullable=False),
        sa.Column('file_url', sa.String(1000), nullable=True),
        sa.Column('file_size_bytes', sa.BigInteger, nullable=True),
        sa.Column('chunk_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Platform key/value settings
    op.create_table(
        'platform_config',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('key', sa.String(100), unique=True, index=True, nullable=False),
        sa.Column('value', sa.Text, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now(), onupdate=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('platform_config')
    op.drop_table('knowledge_base_documents')
    op.drop_table('oauth_connections')
    op.drop_table('telephony_configs')
    op.drop_index('ix_agent_configs_user_created', table_name='agent_configs')
    op.drop_table('agent_configs')
    op.drop_table('users')
