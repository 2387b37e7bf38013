"""Tests for research lifecycle schemas."""

import asyncio
import json

import httpx
import pytest
from pydantic import ValidationError

from research_agent.data_management.schemas.research_schema import (
    AgentError,
    ErrorKind,
    PlanStep,
    QualityScore,
    ResearchPlan,
    ResearchStrategy,
    SourceRecord,
    extract_domain,
)
from research_agent.data_management.schemas.verification_schema import (
    ClaimStatus,
    ClaimVerification,
    SupportLevel,
    VerificationSource,
)


class TestQualityScore:
    def test_overall_is_component_mean(self):
        score = QualityScore(accuracy=1.0, completeness=0.5, freshness=0.0, source_quality=0.5, claim_verification=0.5)
        assert score.overall == pytest.approx(0.5)

    def test_supplied_overall_ignored(self):
        assert QualityScore(overall=0.9).overall == 0.0

    def test_components_clamped(self):
        score = QualityScore(accuracy=3.0, completeness=-1.0)
        assert score.accuracy == 1.0
        assert score.completeness == 0.0
        assert score.overall == pytest.approx(0.2)

    def test_merged_recomputes_overall(self):
        score = QualityScore(accuracy=1.0).merged(completeness=1.0, bogus=1.0)
        assert score.accuracy == 1.0
        assert score.completeness == 1.0
        assert score.overall == pytest.approx(0.4)


class TestResearchPlan:
    def test_is_ready_follows_dependencies(self):
        search = PlanStep(id="search-1", kind="search", description="search")
        analyze = PlanStep(id="analyze-1", kind="analyze", description="analyze", dependencies=["search-1"])
        plan = ResearchPlan(query="q", strategy=ResearchStrategy(), steps=[search, analyze])

        assert plan.is_ready(search)
        assert not plan.is_ready(analyze)
        search.status = "completed"
        assert plan.is_ready(analyze)

    def test_missing_dependency_not_ready(self):
        step = PlanStep(id="a", kind="verify", description="verify", dependencies=["ghost"])
        plan = ResearchPlan(query="q", strategy=ResearchStrategy(), steps=[step])
        assert not plan.is_ready(step)

    def test_strategy_parallelism_bounds(self):
        with pytest.raises(ValidationError):
            ResearchStrategy(parallelism=0)


class TestSourceRecord:
    def test_domain_derived_from_url(self):
        source = SourceRecord(url="https://www.Reuters.com/markets/article")
        assert source.domain == "reuters.com"

    def test_explicit_domain_kept(self):
        assert SourceRecord(url="https://a.example/x", domain="custom").domain == "custom"

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("sec.gov/filings", "sec.gov"),
            ("http://www.bbc.co.uk", "bbc.co.uk"),
            ("https://WWW.Example.COM:8080/path", "example.com"),
        ],
    )
    def test_extract_domain(self, url, expected):
        assert extract_domain(url) == expected


class TestAgentError:
    def test_timeout_is_recoverable(self):
        error = AgentError.from_exception(asyncio.TimeoutError())
        assert error.kind == ErrorKind.TIMEOUT
        assert error.recoverable
        assert error.message == "TimeoutError"

    def test_rate_limit_from_status(self):
        request = httpx.Request("POST", "https://search.example")
        response = httpx.Response(429, request=request)
        error = AgentError.from_exception(httpx.HTTPStatusError("too many", request=request, response=response))
        assert error.kind == ErrorKind.RATE_LIMIT
        assert error.recoverable

    def test_client_error_not_recoverable(self):
        request = httpx.Request("GET", "https://search.example")
        response = httpx.Response(404, request=request)
        error = AgentError.from_exception(httpx.HTTPStatusError("missing", request=request, response=response))
        assert error.kind == ErrorKind.NETWORK
        assert not error.recoverable

    def test_parse_error(self):
        try:
            json.loads("{")
        except json.JSONDecodeError as e:
            error = AgentError.from_exception(e, context={"phase": "analyzing"})
        assert error.kind == ErrorKind.PARSING
        assert error.context == {"phase": "analyzing"}

    def test_unknown_error(self):
        error = AgentError.from_exception(RuntimeError("boom"))
        assert error.kind == ErrorKind.UNKNOWN
        assert not error.recoverable
        assert error.message == "boom"

    @pytest.mark.parametrize(
        "message, kind, recoverable",
        [
            ("Client error '429 Too Many Requests' for url 'https://search.example'", ErrorKind.RATE_LIMIT, True),
            ("Rate limit exceeded", ErrorKind.RATE_LIMIT, True),
            ("The read operation timed out", ErrorKind.TIMEOUT, True),
            ("HTTP 403", ErrorKind.NETWORK, False),
            ("Server error '503 Service Unavailable'", ErrorKind.NETWORK, True),
            ("[Errno 111] Connection refused", ErrorKind.NETWORK, True),
            ("SERPER_API_KEY not configured", ErrorKind.UNKNOWN, False),
        ],
    )
    def test_from_message(self, message, kind, recoverable):
        error = AgentError.from_message(message, context={"query": "q"})
        assert error.kind == kind
        assert error.recoverable is recoverable
        assert error.message == message
        assert error.context == {"query": "q"}


class TestClaimVerification:
    def test_verified_requires_strong_source(self):
        weak = VerificationSource(url="https://a.example", domain="a.example", support_level=SupportLevel.WEAK)
        with pytest.raises(ValidationError):
            ClaimVerification(claim="c", status=ClaimStatus.VERIFIED, confidence=0.9, sources=[weak])

    def test_verified_requires_high_confidence(self):
        strong = VerificationSource(url="https://a.example", domain="a.example", support_level=SupportLevel.STRONG)
        with pytest.raises(ValidationError):
            ClaimVerification(claim="c", status=ClaimStatus.VERIFIED, confidence=0.7, sources=[strong])

    def test_supporting_and_contradicting(self):
        sources = [
            VerificationSource(url="https://a.example", domain="a.example", support_level=SupportLevel.STRONG),
            VerificationSource(url="https://b.example", domain="b.example", support_level=SupportLevel.CONTRADICTS),
            VerificationSource(url="https://c.example", domain="c.example", support_level=SupportLevel.NONE),
        ]
        verification = ClaimVerification(claim="c", status=ClaimStatus.VERIFIED, confidence=0.85, sources=sources)
        assert [s.domain for s in verification.supporting_sources] == ["a.example"]
        assert [s.domain for s in verification.contradicting_sources] == ["b.example"]
