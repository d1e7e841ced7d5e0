"""
Search grounding metadata attached to a Gemini response.

Gemini reports the pages it searched (chunks) and which spans of its answer
each page supports (supports). The extractor rebuilds per-source raw text
and inline citations from these.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _items(obj: Any, name: str) -> list:
    return list(getattr(obj, name, None) or [])


class GroundingChunk(BaseModel):
    """One web page Gemini searched. uri is usually a grounding redirect."""

    uri: Optional[str] = None
    title: Optional[str] = Field(None, description="Page title; for redirects this is often the host name")
    domain: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "uri": "https://vertexaisearch.cloud.google.com/grounding-api-redirect/AbC123",
                "title": "kellogg.northwestern.edu",
                "domain": "kellogg.northwestern.edu",
            }
        }
    )


class GroundingSupport(BaseModel):
    """A span of the answer and the chunks backing it."""

    segment_text: Optional[str] = None
    start_index: Optional[int] = None
    end_index: Optional[int] = None
    confidence_scores: list[float] = Field(default_factory=list)
    grounding_chunk_indices: list[int] = Field(default_factory=list)


class GroundingMetadata(BaseModel):
    web_search_queries: list[str] = Field(default_factory=list)
    grounding_chunks: list[GroundingChunk] = Field(default_factory=list)
    grounding_supports: list[GroundingSupport] = Field(default_factory=list)

    @classmethod
    def from_response(cls, response: Any) -> "GroundingMetadata":
        """Read grounding metadata off a google-genai GenerateContentResponse.

        Responses without candidates or without grounding (plain generation)
        give an empty instance.
        """
        candidates = _items(response, "candidates")
        raw = getattr(candidates[0], "grounding_metadata", None) if candidates else None
        if not raw:
            return cls()

        chunks = [
            GroundingChunk(uri=getattr(web, "uri", None), title=getattr(web, "title", None), domain=getattr(web, "domain", None))
            for web in (getattr(chunk, "web", None) for chunk in _items(raw, "grounding_chunks"))
            if web
        ]
        supports = []
        for support in _items(raw, "grounding_supports"):
            segment = getattr(support, "segment", None)
            supports.append(
                GroundingSupport(
                    segment_text=getattr(segment, "text", None),
                    start_index=getattr(segment, "start_index", None),
                    end_index=getattr(segment, "end_index", None),
                    confidence_scores=_items(support, "confidence_scores"),
                    grounding_chunk_indices=_items(support, "grounding_chunk_indices"),
                )
            )
        return cls(
            web_search_queries=_items(raw, "web_search_queries"),
            grounding_chunks=chunks,
            grounding_supports=supports,
        )

    @property
    def source_urls(self) -> list[str]:
        return [chunk.uri for chunk in self.grounding_chunks if chunk.uri]

    def supporting_text(self, chunk_index: int) -> str:
        """Join the response segments attributed to one grounding chunk."""
        segments = [
            support.segment_text.strip()
            for support in self.grounding_supports
            if chunk_index in support.grounding_chunk_indices
            and support.segment_text
            and support.segment_text.strip()
        ]
        return "\n\n".join(segments)


class InlineCitation(BaseModel):
    """A response segment mapped to the validated sources that support it."""

    model_config = ConfigDict(frozen=True)

    text: str
    source_indices: tuple[int, ...] = ()
    start_index: Optional[int] = None
    end_index: Optional[int] = None
