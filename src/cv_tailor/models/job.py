"""Pydantic model for the job a CV or cover letter is tailored to."""

from __future__ import annotations

from pydantic import BaseModel


class JobPosting(BaseModel):
    company_name: str = "Unknown Company"
    job_title: str = "Position"
    job_description: str = ""
    job_location: str | None = None
