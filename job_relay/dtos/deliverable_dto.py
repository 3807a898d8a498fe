"""
DTOs for deliverable generation.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class CompanyProfile(BaseModel):
    company_name: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1)
    linkedin_handle: str | None = None
    youtube_channel_id: str | None = None


class ResearchInputs(BaseModel):
    client: CompanyProfile
    competitors: list[CompanyProfile] = Field(default_factory=list)
    seed_topics: list[str] | None = None
    max_crawl_pages: int | None = Field(None, gt=0)


class GenerateDeliverableRequest(BaseModel):
    instructions: str | None = None
    primary_meeting_ids: list[str] = Field(default_factory=list)
    research_inputs: ResearchInputs | None = None
    previous_roadmap_id: str | None = None
    seed_topics: list[str] | None = None
    max_crawl_pages: int | None = Field(None, gt=0)

    def resolved_seed_topics(self) -> list[str] | None:
        # Clients send these either at the top level or inside research_inputs.
        if self.seed_topics is not None:
            return self.seed_topics
        return self.research_inputs.seed_topics if self.research_inputs else None

    def resolved_max_crawl_pages(self) -> int | None:
        if self.max_crawl_pages is not None:
            return self.max_crawl_pages
        return self.research_inputs.max_crawl_pages if self.research_inputs else None


class ContextSummary(BaseModel):
    prior_deliverables: list[str] = Field(default_factory=list)
    primary_meetings_count: int = 0
    has_instructions: bool = False
    competitors_count: int = 0


class GenerationStateRead(BaseModel):
    status: str
    job_id: str | None = None
    run_id: str | None = None
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    context_summary: ContextSummary | None = None
