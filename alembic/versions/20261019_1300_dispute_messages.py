"""dispute messages thread

Revision ID: 20261019_1300_dispute_messages
Revises: 20261019_1200_escrow_schema
Create Date: 2026-10-19 13:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_1300_dispute_messages'
down_revision = '20261019_1200_escrow_schema'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'dispute_messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('dispute_id', sa.Integer(), nullable=False),
        sa.Column('sender_id', sa.Integer(), nullable=False),
        sa.Column('sender_type', sa.Enum('BUYER', 'SELLER', 'ADMIN', name='messagesendertype'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['dispute_id'], ['disputes.id'], ),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_dispute_messages_id'), 'dispute_messages', ['id'], unique=False)
    op.create_index(op.f('ix_dispute_messages_dispute_id'), 'dispute_messages', ['dispute_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_dispute_messages_dispute_id'), table_name='dispute_messages')
    op.drop_index(op.f('ix_dispute_messages_id'), table_name='dispute_messages')
    op.drop_table('dispute_messages')
    sa.Enum(name='messagesendertype').drop(op.get_bind(), checkfirst=True)
