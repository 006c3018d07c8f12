"""Tests for text search."""

from datetime import datetime, timezone

import pytest
from conftest import set_page_text

from docscan.schemas.document import DocumentStatus, FileType
from docscan.schemas.page import BoundingBox, PageStatus, Word
from docscan.schemas.search import SearchFilters
from docscan.services.search_service import (
    SearchQueryError,
    SearchService,
    extract_snippet,
    find_highlights,
)


@pytest.fixture
def search(store):
    return SearchService(store)


class TestSnippets:
    """Tests for snippet and highlight extraction."""

    def test_snippet_around_first_hit(self):
        text = "a" * 300 + " needle " + "b" * 300

        snippet = extract_snippet(text, ["needle"], context=20)

        assert snippet.startswith("...")
        assert snippet.endswith("...")
        assert "needle" in snippet
        assert len(snippet) == 40 + 6

    def test_snippet_at_start_not_marked(self):
        assert extract_snippet("Needle in a short text", ["needle"]) == "Needle in a short text"

    def test_snippet_without_hit_uses_start(self):
        assert extract_snippet("x" * 50, ["missing"], context=10) == "x" * 20 + "..."

    def test_highlights_case_insensitive(self):
        words = [
            Word(text="Invoice", bbox=BoundingBox(x0=1, y0=2, x1=30, y1=12), confidence=95.0),
            Word(text="total"),
            Word(text="INVOICES"),
        ]

        highlights = find_highlights(words, ["invoice"])

        assert [h.text for h in highlights] == ["Invoice", "INVOICES"]
        assert highlights[0].bbox.x1 == 30


class TestSearch:
    """Tests for searching a user's documents."""

    def test_any_term_matches_ignoring_case(self, search, store, make_document):
        invoice = make_document(pages=2, title="Invoice")
        set_page_text(store, invoice, "Total AMOUNT due", page_number=1)
        set_page_text(store, invoice, "Thank you", page_number=2)
        letter = make_document(pages=1)
        set_page_text(store, letter, "Dear customer, thank you")
        unrelated = make_document(pages=1)
        set_page_text(store, unrelated, "nothing here")

        response = search.search("user-1", "amount THANK")

        assert response.total == 2
        by_id = {match.document.id: match for match in response.results}
        assert by_id[invoice.id].match_count == 2
        assert [p.page_number for p in by_id[invoice.id].matching_pages] == [1, 2]
        assert by_id[letter.id].matching_pages[0].snippet == "Dear customer, thank you"

    def test_only_owner_documents(self, search, store, make_document):
        document = make_document(owner_id="bob", pages=1)
        set_page_text(store, document, "shared words")

        assert search.search("user-1", "shared").total == 0
        assert search.search("bob", "shared").total == 1

    def test_empty_query_rejected(self, search):
        with pytest.raises(SearchQueryError):
            search.search("user-1", "   ")

    def test_pages_without_text_ignored(self, search, store, make_document):
        document = make_document(pages=1)
        set_page_text(store, document, "", status=PageStatus.FAILED)

        assert search.search("user-1", "anything").total == 0

    def test_min_confidence_drops_pages(self, search, store, make_document):
        document = make_document(pages=2)
        set_page_text(store, document, "blurry receipt", page_number=1, confidence=40.0)
        set_page_text(store, document, "clear receipt", page_number=2, confidence=85.0)

        response = search.search("user-1", "receipt", SearchFilters(min_confidence=60))

        assert [p.page_number for p in response.results[0].matching_pages] == [2]

    def test_document_filters(self, search, store, make_document):
        tagged = make_document(pages=1, tags=["tax", "2024"])
        set_page_text(store, tagged, "form 1040")
        plain = make_document(pages=1, status=DocumentStatus.COMPLETED)
        set_page_text(store, plain, "form 1040")

        by_tag = search.search("user-1", "form", SearchFilters(tags=["tax"]))
        by_status = search.search("user-1", "form", SearchFilters(statuses=[DocumentStatus.COMPLETED]))
        by_type = search.search("user-1", "form", SearchFilters(file_types=[FileType.PDF]))

        assert [m.document.id for m in by_tag.results] == [tagged.id]
        assert [m.document.id for m in by_status.results] == [plain.id]
        assert by_type.total == 0

    def test_date_range(self, search, store, make_document):
        old = make_document(pages=1, created_at=datetime(2023, 5, 1, tzinfo=timezone.utc))
        set_page_text(store, old, "contract")
        new = make_document(pages=1, created_at=datetime(2025, 5, 1, tzinfo=timezone.utc))
        set_page_text(store, new, "contract")

        # Dates without a timezone are read as UTC
        response = search.search(
            "user-1",
            "contract",
            SearchFilters(date_from=datetime(2024, 1, 1), date_to=datetime(2026, 1, 1)),
        )

        assert [m.document.id for m in response.results] == [new.id]

    def test_sorted_newest_first_and_paginated(self, search, store, make_document):
        documents = []
        for year in (2021, 2023, 2022):
            document = make_document(pages=1, created_at=datetime(year, 1, 1, tzinfo=timezone.utc))
            set_page_text(store, document, "report")
            documents.append(document)

        first = search.search("user-1", "report", limit=2)
        second = search.search("user-1", "report", page=2, limit=2)

        assert first.total == 3
        assert first.total_pages == 2
        assert [m.document.id for m in first.results] == [documents[1].id, documents[2].id]
        assert [m.document.id for m in second.results] == [documents[0].id]

    def test_sort_by_matches(self, search, store, make_document):
        one = make_document(pages=1)
        set_page_text(store, one, "memo")
        two = make_document(pages=2)
        set_page_text(store, two, "memo", page_number=1)
        set_page_text(store, two, "memo", page_number=2)

        response = search.search("user-1", "memo", sort_by="matches")

        assert [m.document.id for m in response.results] == [two.id, one.id]


class TestSearchDocument:
    """Tests for searching inside one document."""

    def test_matching_pages_with_highlights(self, search, store, make_document):
        document = make_document(pages=3, title="Lease")
        set_page_text(store, document, "Rent is due monthly", page_number=1, words=[Word(text="Rent")])
        set_page_text(store, document, "Deposit terms", page_number=2)
        set_page_text(store, document, "Late rent fees", page_number=3, words=[Word(text="Late"), Word(text="rent")])

        response = search.search_document(document, "rent")

        assert response.title == "Lease"
        assert response.total == 2
        assert [p.page_number for p in response.results] == [1, 3]
        assert [h.text for h in response.results[1].highlights] == ["rent"]

    def test_empty_query_rejected(self, search, make_document):
        with pytest.raises(SearchQueryError):
            search.search_document(make_document(), "")


class TestSuggestions:
    """Tests for query suggestions."""

    def test_tags_and_title_words(self, search, make_document):
        make_document(title="Quarterly tax summary, Tax", tags=["taxes", "finance"])

        suggestions = search.suggestions("user-1", "TAX").suggestions

        # Repeats differing only in case appear once
        assert suggestions == ["taxes", "tax"]

    def test_short_title_words_left_out(self, search, make_document):
        make_document(title="ab abc")

        assert search.suggestions("user-1", "ab").suggestions == ["abc"]

    def test_short_query(self, search, make_document):
        make_document(tags=["a1"])

        assert search.suggestions("user-1", "a").suggestions == []
