# Import every entity so Base.metadata knows all tables.
from job_relay.entities.base import Base
from job_relay.entities.content_asset import ContentAsset
from job_relay.entities.content_taxonomy import ContentCategory, ContentType
from job_relay.entities.deliverable import Deliverable
from job_relay.entities.ingestion_batch import IngestionBatch
from job_relay.entities.ingestion_item import IngestionItem
from job_relay.entities.knowledge_chunk import KnowledgeChunk

__all__ = [
    "Base",
    "ContentAsset",
    "ContentCategory",
    "ContentType",
    "Deliverable",
    "IngestionBatch",
    "IngestionItem",
    "KnowledgeChunk",
]
