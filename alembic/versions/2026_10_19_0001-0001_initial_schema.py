"""Initial schema: admins, widget configs, conversations, metrics, feedback

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ### admins ###
    op.create_table(
        'admins',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_admins_id', 'admins', ['id'], unique=False)
    op.create_index('ix_admins_email', 'admins', ['email'], unique=True)

    # ### widget_configs ###
    op.create_table(
        'widget_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('agent_id', sa.String(length=255), nullable=False),
        sa.Column('api_key_encrypted', sa.Text(), nullable=False),
        sa.Column('theme', sa.JSON(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['admin_id'], ['admins.id'], name='fk_widget_configs_admin_id', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_widget_configs_id', 'widget_configs', ['id'], unique=False)
    op.create_index('ix_widget_configs_admin_id', 'widget_configs', ['admin_id'], unique=False)

    # ### conversations ###
    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('config_id', sa.Integer(), nullable=True),
        sa.Column('agent_id', sa.String(length=255), nullable=False),
        sa.Column('owner_token', sa.String(length=64), nullable=False),
        sa.Column('messages', sa.JSON(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('total_turns', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('interruptions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('overall_sentiment', sa.Float(), nullable=True),
        sa.Column('sentiment_trend', sa.JSON(), nullable=False),
        sa.Column('emotional_states', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['config_id'], ['widget_configs.id'], name='fk_conversations_config_id', ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_conversations_id', 'conversations', ['id'], unique=False)
    op.create_index('ix_conversations_config_id', 'conversations', ['config_id'], unique=False)
    op.create_index('idx_conversations_started', 'conversations', ['started_at'], unique=False)
    op.create_index('idx_conversations_agent', 'conversations', ['agent_id', 'started_at'], unique=False)

    # ### conversation_metrics ###
    op.create_table(
        'conversation_metrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('conversation_id', sa.Integer(), nullable=False),
        sa.Column('avg_response_time', sa.Float(), nullable=False),
        sa.Column('user_engagement_score', sa.Integer(), nullable=False),
        sa.Column('completion_rate', sa.Float(), nullable=False),
        sa.Column('successful_interruptions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_interruptions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], name='fk_conversation_metrics_conversation_id', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('conversation_id', name='uq_conversation_metrics_conversation'),
    )
    op.create_index('ix_conversation_metrics_id', 'conversation_metrics', ['id'], unique=False)

    # ### conversation_feedback ###
    op.create_table(
        'conversation_feedback',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('conversation_id', sa.Integer(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('sentiment', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('rating BETWEEN 1 AND 5', name='ck_conversation_feedback_rating'),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], name='fk_conversation_feedback_conversation_id', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_conversation_feedback_id', 'conversation_feedback', ['id'], unique=False)
    op.create_index('ix_conversation_feedback_conversation_id', 'conversation_feedback', ['conversation_id'], unique=False)
    op.create_index('idx_conversation_feedback_created', 'conversation_feedback', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_conversation_feedback_created', table_name='conversation_feedback')
    op.drop_index('ix_conversation_feedback_conversation_id', table_name='conversation_feedback')
    op.drop_index('ix_conversation_feedback_id', table_name='conversation_feedback')
    op.drop_table('conversation_feedback')

    op.drop_index('ix_conversation_metrics_id', table_name='conversation_metrics')
    op.drop_table('conversation_metrics')

    op.drop_index('idx_conversations_agent', table_name='conversations')
    op.drop_index('idx_conversations_started', table_name='conversations')
    op.drop_index('ix_conversations_config_id', table_name='conversations')
    op.drop_index('ix_conversations_id', table_name='conversations')
    op.drop_table('conversations')

    op.drop_index('ix_widget_configs_admin_id', table_name='widget_configs')
    op.drop_index('ix_widget_configs_id', table_name='widget_configs')
    op.drop_table('widget_configs')

    op.drop_index('ix_admins_email', table_name='admins')
    op.drop_index('ix_admins_id', table_name='admins')
    op.drop_table('admins')
