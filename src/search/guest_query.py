"""
Guest lookup helpers.

Builds the search query for a hotel guest and condenses the results into a
summary: LinkedIn profile, a job title guess, and the top snippets.
"""

import re

from pydantic import BaseModel, ConfigDict, Field

from src.search.provider import ResultRecord

# "Jane Doe - Head of Sales - Acme | LinkedIn" -> "Head of Sales"
_JOB_TITLE_PATTERN = re.compile(
    r"[-–]\s*([^-–|]*(?:CEO|CTO|CFO|COO|Director|Manager|Founder|Owner|Partner|Head|VP|"
    r"President|Chief)[^-–|]*)",
    re.IGNORECASE,
)

LINKEDIN_PROFILE_MARKER = "linkedin.com/in/"
NOTABLE_SNIPPETS = 3


class GuestSearchSummary(BaseModel):
    """What a web search turned up about one guest."""

    model_config = ConfigDict(extra="forbid")

    query: str
    job_title: str | None = None
    company_name: str | None = None
    linkedin_url: str | None = None
    notable_info: str = ""
    results: list[ResultRecord] = Field(default_factory=list)


def build_guest_query(full_name: str, company: str | None = None, country: str | None = None) -> str:
    """Exact-phrase query for a guest: "name" "company" country."""
    query = f'"{full_name.strip()}"'
    if company and company.strip():
        query += f' "{company.strip()}"'
    if country and country.strip():
        query += f" {country.strip()}"
    return query


def extract_job_title(record: ResultRecord) -> str | None:
    """Find an executive-style job title in a result's title and snippet."""
    match = _JOB_TITLE_PATTERN.search(f"{record.title} {record.snippet}")
    if match is None:
        return None
    return match.group(1).strip() or None


def summarize_guest_results(
    query: str,
    results: list[ResultRecord],
    company: str | None = None,
) -> GuestSearchSummary:
    """Condense guest search results.

    The first LinkedIn profile result supplies the profile link and the job
    title; the first few snippets become the notable info.
    """
    linkedin = next((r for r in results if LINKEDIN_PROFILE_MARKER in r.link), None)
    snippets = [r.snippet for r in results[:NOTABLE_SNIPPETS] if r.snippet]

    return GuestSearchSummary(
        query=query,
        job_title=extract_job_title(linkedin) if linkedin else None,
        company_name=company or None,
        linkedin_url=linkedin.link if linkedin else None,
        notable_info=" | ".join(snippets),
        results=results,
    )
