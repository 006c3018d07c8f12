"""
Full-text search over recognized pages.

A page matches when its text contains any of the query's whitespace
separated terms, ignoring case. Results carry a snippet around the first
hit and, for single-document searches, the recognized words that hit.
"""

import logging
import math

from docscan.schemas.document import Document
from docscan.schemas.page import Page, Word
from docscan.schemas.search import (
    DocumentMatch,
    DocumentSearchResponse,
    Highlight,
    PageMatch,
    SearchFilters,
    SearchResponse,
    SearchSort,
    SuggestionsResponse,
)
from docscan.storage import RecordStore

logger = logging.getLogger(__name__)

SNIPPET_CONTEXT = 150
MAX_SUGGESTIONS = 10


class SearchQueryError(ValueError):
    """Raised when a search query has no terms."""


def query_terms(query: str) -> list[str]:
    return query.lower().split()


def extract_snippet(text: str, terms: list[str], context: int = SNIPPET_CONTEXT) -> str:
    """
    Cut the text around the first occurrence of any term.

    ``...`` marks each side that was truncated. Without a hit the start of
    the text is returned.
    """
    if not text:
        return ""

    lowered = text.lower()
    hits = [index for index in (lowered.find(term) for term in terms) if index != -1]
    if not hits:
        start, end = 0, min(len(text), context * 2)
    else:
        first = min(hits)
        start, end = max(0, first - context), min(len(text), first + context)

    snippet = text[start:end]
    if start > 0:
        snippet = f"...{snippet}"
    if end < len(text):
        snippet = f"{snippet}..."
    return snippet


def find_highlights(words: list[Word], terms: list[str]) -> list[Highlight]:
    return [
        Highlight(text=word.text, bbox=word.bbox, confidence=word.confidence)
        for word in words
        if any(term in word.text.lower() for term in terms)
    ]


def page_matches(page: Page, terms: list[str]) -> bool:
    lowered = page.text.lower()
    return any(term in lowered for term in terms)


def _paginate(items: list, page: int, limit: int) -> tuple[list, int]:
    start = (page - 1) * limit
    return items[start:start + limit], math.ceil(len(items) / limit) if limit else 0


class SearchService:
    """Searches the text of a user's documents."""

    def __init__(self, store: RecordStore, max_documents: int = 1000):
        """
        Args:
            store: Record store holding documents and pages.
            max_documents: Most recent documents of a user considered per search.
        """
        self.store = store
        self.max_documents = max_documents

    def _terms(self, query: str) -> list[str]:
        terms = query_terms(query)
        if not terms:
            raise SearchQueryError("Search query is required")
        return terms

    @staticmethod
    def _accepts_document(document: Document, filters: SearchFilters) -> bool:
        if filters.file_types and document.file_type not in filters.file_types:
            return False
        if filters.statuses and document.status not in filters.statuses:
            return False
        if filters.tags and not set(filters.tags) & set(document.tags):
            return False
        if filters.date_from and document.created_at < filters.date_from:
            return False
        if filters.date_to and document.created_at > filters.date_to:
            return False
        return True

    @staticmethod
    def _accepts_page(page: Page, filters: SearchFilters) -> bool:
        if filters.min_confidence is not None and page.confidence < filters.min_confidence:
            return False
        if filters.max_confidence is not None and page.confidence > filters.max_confidence:
            return False
        if filters.languages and page.language not in filters.languages:
            return False
        return True

    def _matching_pages(
        self,
        document_id: str,
        terms: list[str],
        filters: SearchFilters,
        with_highlights: bool = False,
    ) -> list[PageMatch]:
        matches = []
        for page in self.store.pages.list_for_document(document_id):
            if not page.text or not self._accepts_page(page, filters) or not page_matches(page, terms):
                continue
            matches.append(
                PageMatch(
                    page_number=page.page_number,
                    confidence=page.confidence,
                    snippet=extract_snippet(page.text, terms),
                    highlights=find_highlights(page.words, terms) if with_highlights else [],
                )
            )
        return matches

    def search(
        self,
        owner_id: str,
        query: str,
        filters: SearchFilters | None = None,
        page: int = 1,
        limit: int = 10,
        sort_by: SearchSort = "date",
    ) -> SearchResponse:
        """
        Find the owner's documents with pages matching the query.

        Args:
            owner_id: Only this user's documents are searched.
            query: Terms to look for; a page matches if it contains any of them.
            filters: Document and page restrictions.
            page: 1-based page of results.
            limit: Results per page.
            sort_by: ``date`` (newest first), ``confidence`` (document
                average, highest first) or ``matches`` (most matching pages first).

        Raises:
            SearchQueryError: If the query has no terms.
        """
        terms = self._terms(query)
        filters = filters or SearchFilters()

        documents, total_documents = self.store.documents.list(owner_id=owner_id, limit=self.max_documents)
        if total_documents > self.max_documents:
            logger.warning(
                f"Search for {owner_id} covers the newest {self.max_documents} of {total_documents} documents"
            )

        results = []
        for document in documents:
            if not self._accepts_document(document, filters):
                continue
            matches = self._matching_pages(document.id, terms, filters)
            if matches:
                results.append(DocumentMatch(document=document, matching_pages=matches, match_count=len(matches)))

        if sort_by == "confidence":
            results.sort(key=lambda match: match.document.average_confidence, reverse=True)
        elif sort_by == "matches":
            results.sort(key=lambda match: match.match_count, reverse=True)
        else:
            results.sort(key=lambda match: match.document.created_at, reverse=True)

        selected, total_pages = _paginate(results, page, limit)
        logger.debug(f"Search '{query}' for {owner_id}: {len(results)} documents matched")
        return SearchResponse(
            query=query,
            results=selected,
            page=page,
            limit=limit,
            total=len(results),
            total_pages=total_pages,
        )

    def search_document(self, document: Document, query: str, page: int = 1, limit: int = 20) -> DocumentSearchResponse:
        """
        Matching pages of one document, in page order, with word highlights.

        Raises:
            SearchQueryError: If the query has no terms.
        """
        terms = self._terms(query)
        matches = self._matching_pages(document.id, terms, SearchFilters(), with_highlights=True)
        selected, total_pages = _paginate(matches, page, limit)
        return DocumentSearchResponse(
            query=query,
            document_id=document.id,
            title=document.title,
            results=selected,
            page=page,
            limit=limit,
            total=len(matches),
            total_pages=total_pages,
        )

    def suggestions(self, owner_id: str, query: str) -> SuggestionsResponse:
        """Tags and title words of the owner's documents containing the query."""
        needle = query.strip().lower()
        if len(needle) < 2:
            return SuggestionsResponse(suggestions=[])

        documents, _ = self.store.documents.list(owner_id=owner_id, limit=self.max_documents)
        found: list[str] = []
        seen: set[str] = set()
        for document in documents:
            candidates = document.tags + [word for word in document.title.split() if len(word) > 2]
            for candidate in candidates:
                lowered = candidate.lower()
                if needle in lowered and lowered not in seen:
                    seen.add(lowered)
                    found.append(candidate)
                    if len(found) >= MAX_SUGGESTIONS:
                        return SuggestionsResponse(suggestions=found)
        return SuggestionsResponse(suggestions=found)
