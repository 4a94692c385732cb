from __future__ import annotations

import json

from bookworm.domain.book_payload import (
    book_authors,
    book_cover_url,
    book_fingerprint,
    book_genres,
    book_isbns,
    book_key,
    book_rating,
    book_tags,
    document_title_matches,
    extract_genres,
    genre_words,
    normalize_isbn,
    normalize_title,
    title_keywords,
)


def test_book_key_prefers_id_then_slug_then_title():
    assert book_key({"id": 42, "slug": "dune", "title": "Dune"}) == "42"
    assert book_key({"slug": "dune", "title": "Dune"}) == "dune"
    assert book_key({"title": "  Dune "}) == "Dune"
    assert book_key({}) is None


def test_book_authors_falls_back_through_shapes():
    cached = {"cached_contributors": [{"name": "Frank Herbert"}, {"name": "frank herbert"}]}
    assert book_authors(cached) == ["Frank Herbert"]

    nested = {"cached_contributors": [{"author": {"name": "Isaac Asimov"}}]}
    assert book_authors(nested) == ["Isaac Asimov"]

    contributions = {"contributions": [{"author": {"name": "Ursula K. Le Guin"}}]}
    assert book_authors(contributions) == ["Ursula K. Le Guin"]

    assert book_authors({"cached_contributors": [], "authors": ["A", "B"]}) == ["A", "B"]


def test_book_isbns_collects_editions_and_top_level_fields():
    book = {
        "default_physical_edition": {"isbn_13": "978-0-441-01359-3", "isbn_10": "0441013597"},
        "default_ebook_edition": {"isbn_13": "9780441013593"},
        "isbns": ["0-553-29335-x"],
    }
    assert book_isbns(book) == ["9780441013593", "0441013597", "055329335X"]


def test_cover_and_rating():
    assert book_cover_url({"image": {"url": "https://img/1.jpg"}}) == "https://img/1.jpg"
    assert book_cover_url({"cover_url": "c.jpg"}) == "c.jpg"
    assert book_rating({"rating": "4.25"}) == 4.25
    assert book_rating({"rating": True, "average_rating": 3}) == 3.0
    assert book_rating({}) is None


def test_extract_genres_handles_every_cached_tags_shape():
    as_object = {"Genre": [{"tag": "Science Fiction"}, {"tag": "Classics"}], "Mood": [{"tag": "dark"}]}
    assert extract_genres(as_object) == ["Science Fiction", "Classics"]

    as_string = json.dumps(as_object)
    assert extract_genres(as_string) == ["Science Fiction", "Classics"]

    as_array = [{"name": "Fantasy"}, "Adventure", {"genre": {"name": "Epic"}}]
    assert extract_genres(as_array) == ["Fantasy", "Adventure", "Epic"]

    # no genre key: every category contributes
    assert extract_genres({"Mood": [{"tag": "hopeful"}]}) == ["hopeful"]
    assert extract_genres("Horror") == ["Horror"]
    assert extract_genres(None) == []


def test_book_tags_spans_all_categories():
    book = {"cached_tags": {"Genre": [{"tag": "Fantasy"}], "Mood": [{"tag": "Adventurous"}]}}
    assert book_genres(book) == ["Fantasy"]
    assert book_tags(book) == ["Fantasy", "Adventurous"]


def test_normalisation_helpers():
    assert normalize_isbn(" 0-553-29335-x ") == "055329335X"
    assert normalize_isbn(None) == ""
    assert normalize_title("Dune:  The Graphic Novel!") == "dune the graphic novel"
    assert title_keywords("The Left Hand of Darkness and the Light") == ["left", "hand", "darkness", "light"]
    assert genre_words(["Science Fiction", "Sci-Fi"]) == {"science", "fiction", "sci"}


def test_fingerprint_ignores_key_order():
    assert book_fingerprint({"a": 1, "b": [1, 2]}) == book_fingerprint({"b": [1, 2], "a": 1})
    assert book_fingerprint({"a": 1}) != book_fingerprint({"a": 2})


def test_document_title_matches_alternative_titles():
    doc = {"title": "Foundation", "alternative_titles": ["Fondation"]}
    assert document_title_matches(doc, "foundation")
    assert document_title_matches(doc, "Fondation")
    assert not document_title_matches(doc, "Foundation and Empire")
    assert not document_title_matches(None, "Foundation")
