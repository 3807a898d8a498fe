"""create job relay tables

Adds the tables behind bulk ingestion and deliverable generation:
ingestion_batches / ingestion_items track submitted jobs and their
callbacks; content_assets, content_types, content_categories hold the
scraped artifacts and their classification; deliverables carries
generation state in its metadata; knowledge_chunks stores embeddings.

See also: job_relay/entities/

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables and indexes.

    Item status changes are compare-and-set updates filtered on
    (batch_id, status), hence the composite index on ingestion_items.
    """
    op.create_table(
        'content_types',
        sa.Column('type_id', sa.String(length=36), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('type_id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_table(
        'content_categories',
        sa.Column('category_id', sa.String(length=36), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('category_id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_table(
        'content_assets',
        sa.Column('asset_id', sa.String(length=36), nullable=False),
        sa.Column('contract_id', sa.String(length=36), nullable=False),
        sa.Column('asset_type', sa.String(length=32), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('content_body', sa.Text(), nullable=True),
        sa.Column('external_url', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('published_date', sa.Date(), nullable=True),
        sa.Column('content_type_id', sa.String(length=36), nullable=True),
        sa.Column('category_id', sa.String(length=36), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('custom_attributes', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('asset_id'),
    )
    op.create_index(op.f('ix_content_assets_contract_id'), 'content_assets', ['contract_id'])
    op.create_index(op.f('ix_content_assets_external_url'), 'content_assets', ['external_url'])

    op.create_table(
        'ingestion_batches',
        sa.Column('batch_id', sa.String(length=36), nullable=False),
        sa.Column('contract_id', sa.String(length=36), nullable=False),
        sa.Column('total', sa.Integer(), nullable=False),
        sa.Column('completed', sa.Integer(), nullable=False),
        sa.Column('failed', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('batch_id'),
    )
    op.create_index(
        op.f('ix_ingestion_batches_contract_id'), 'ingestion_batches', ['contract_id']
    )
    op.create_index(op.f('ix_ingestion_batches_status'), 'ingestion_batches', ['status'])

    op.create_table(
        'ingestion_items',
        sa.Column('item_id', sa.String(length=36), nullable=False),
        sa.Column('batch_id', sa.String(length=36), nullable=False),
        sa.Column('contract_id', sa.String(length=36), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('job_id', sa.String(length=128), nullable=True),
        sa.Column('run_id', sa.String(length=128), nullable=True),
        sa.Column('asset_id', sa.String(length=36), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['batch_id'], ['ingestion_batches.batch_id']),
        sa.ForeignKeyConstraint(['asset_id'], ['content_assets.asset_id']),
        sa.PrimaryKeyConstraint('item_id'),
    )
    op.create_index(op.f('ix_ingestion_items_batch_id'), 'ingestion_items', ['batch_id'])
    op.create_index(
        'ix_ingestion_items_batch_status', 'ingestion_items', ['batch_id', 'status']
    )

    op.create_table(
        'deliverables',
        sa.Column('deliverable_id', sa.String(length=36), nullable=False),
        sa.Column('contract_id', sa.String(length=36), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('deliverable_type', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('content_raw', sa.Text(), nullable=True),
        sa.Column('content_structured', sa.JSON(none_as_null=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('deliverable_id'),
    )
    op.create_index(op.f('ix_deliverables_contract_id'), 'deliverables', ['contract_id'])
    op.create_index(
        op.f('ix_deliverables_deliverable_type'), 'deliverables', ['deliverable_type']
    )

    op.create_table(
        'knowledge_chunks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('contract_id', sa.String(length=36), nullable=True),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_id', sa.String(length=36), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('chunk_index', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('embedding', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        op.f('ix_knowledge_chunks_contract_id'), 'knowledge_chunks', ['contract_id']
    )
    op.create_index(op.f('ix_knowledge_chunks_source_id'), 'knowledge_chunks', ['source_id'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index(op.f('ix_knowledge_chunks_source_id'), table_name='knowledge_chunks')
    op.drop_index(op.f('ix_knowledge_chunks_contract_id'), table_name='knowledge_chunks')
    op.drop_table('knowledge_chunks')
    op.drop_index(op.f('ix_deliverables_deliverable_type'), table_name='deliverables')
    op.drop_index(op.f('ix_deliverables_contract_id'), table_name='deliverables')
    op.drop_table('deliverables')
    op.drop_index('ix_ingestion_items_batch_status', table_name='ingestion_items')
    op.drop_index(op.f('ix_ingestion_items_batch_id'), table_name='ingestion_items')
    op.drop_table('ingestion_items')
    op.drop_index(op.f('ix_ingestion_batches_status'), table_name='ingestion_batches')
    op.drop_index(op.f('ix_ingestion_batches_contract_id'), table_name='ingestion_batches')
    op.drop_table('ingestion_batches')
    op.drop_index(op.f('ix_content_assets_external_url'), table_name='content_assets')
    op.drop_index(op.f('ix_content_assets_contract_id'), table_name='content_assets')
    op.drop_table('content_assets')
    op.drop_table('content_categories')
    op.drop_table('content_types')
