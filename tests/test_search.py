"""Tests for two-tier search: FTS5 index first, substring fallback second."""

import sqlite3

import pytest

from omni_memory.backends import IndexQuery, is_query_syntax_error
from omni_memory.errors import SearchSyntaxError, StorageIOError
from omni_memory.memory import FALLBACK_SCORE, SEARCH_MAX_LIMIT, sanitize_fts_query


@pytest.fixture
def languages(store):
    store.add("typescript is rigorous", area="general")
    store.add("python is dynamic", area="general")
    store.add("typescript and python are cool", area="general")
    return store


class TestSanitizeFtsQuery:
    def test_plain_words_become_a_phrase(self):
        assert sanitize_fts_query("hello world") == '"hello world"'

    def test_grammar_characters_are_stripped(self):
        assert sanitize_fts_query('"foo" -bar* ^baz + qux~') == '"foo bar baz qux"'

    def test_column_filter_and_groups_are_stripped(self):
        assert sanitize_fts_query("content:(alpha OR beta)") == '"content alpha OR beta"'

    def test_whitespace_is_collapsed(self):
        assert sanitize_fts_query("  spaced \t out \n words ") == '"spaced out words"'

    def test_only_special_characters_keeps_raw_query(self):
        assert sanitize_fts_query('"*"') == '"*"'
        assert sanitize_fts_query("***") == "***"


class TestIndexSearch:
    def test_finds_matching_content(self, languages):
        results = languages.search("rigorous")
        assert [r.content for r in results] == ["typescript is rigorous"]

    def test_scores_are_positive_magnitudes(self, languages):
        results = languages.search("typescript")
        assert len(results) == 2
        assert all(r.score > 0 for r in results)

    def test_matches_project_and_tags(self, store):
        by_project = store.add("first note", project="kestrel")
        by_tag = store.add("second note", tags=["ocelot"])

        assert [r.id for r in store.search("kestrel")] == [by_project]
        assert [r.id for r in store.search("ocelot")] == [by_tag]

    def test_area_and_project_filters(self, store):
        store.add("deploy script", area="snippets", project="web")
        store.add("deploy checklist", area="solutions", project="web")
        store.add("deploy notes", area="snippets", project="api")

        assert {r.content for r in store.search("deploy", area="snippets")} == {"deploy script", "deploy notes"}
        assert [r.content for r in store.search("deploy", area="snippets", project="web")] == ["deploy script"]

    def test_limit_is_clamped(self, store):
        for i in range(SEARCH_MAX_LIMIT + 5):
            store.add(f"common entry {i}")

        assert len(store.search("common", limit=500)) == SEARCH_MAX_LIMIT
        assert len(store.search("common")) == 10
        assert len(store.search("common", limit=3)) == 3

    def test_no_results(self, languages):
        assert languages.search("haskell") == []


class TestAdvancedSyntax:
    def test_boolean_and(self, languages):
        results = languages.search("typescript AND rigorous", enable_advanced_syntax=True)
        assert [r.content for r in results] == ["typescript is rigorous"]

    def test_quoted_not(self, languages):
        results = languages.search('"typescript" NOT "dynamic"', enable_advanced_syntax=True)
        assert {r.content for r in results} == {"typescript is rigorous", "typescript and python are cool"}

    def test_sanitized_mode_treats_operators_as_words(self, languages):
        languages.add("typescript and rigorous typing")

        plain = languages.search("typescript AND rigorous")
        advanced = languages.search("typescript AND rigorous", enable_advanced_syntax=True)

        assert [r.content for r in plain] == ["typescript and rigorous typing"]
        assert len(advanced) == 2

    def test_unterminated_quote_raises(self, languages):
        with pytest.raises(SearchSyntaxError) as excinfo:
            languages.search('"unclosed', enable_advanced_syntax=True)
        assert excinfo.value.query == '"unclosed'
        assert "Invalid FTS5 advanced syntax" in str(excinfo.value)

    def test_unterminated_quote_sanitized_does_not_raise(self, languages):
        assert languages.search('"unclosed') == []
        assert [r.content for r in languages.search('"rigorous')] == ["typescript is rigorous"]

    def test_special_characters_only_does_not_match_everything(self, languages):
        assert languages.search("***") == []


class TestFallbackSearch:
    def test_word_order_independent(self, store):
        store.add("a configuracao do meu opencode eh legal", area="general")
        store.add("apenas opencode aqui", area="general")

        results = store.fallback_search("opencode configuracao")

        assert len(results) == 1
        assert "configuracao do meu opencode" in results[0].content

    def test_every_word_required(self, store):
        store.add("alpha beta")
        store.add("alpha gamma")
        assert [r.content for r in store.fallback_search("beta alpha")] == ["alpha beta"]

    def test_case_insensitive(self, store):
        store.add("Configure OpenCode quickly")
        assert len(store.fallback_search("opencode")) == 1

    def test_fixed_score_and_newest_first(self, store):
        first = store.add("shared word one")
        second = store.add("shared word two")

        results = store.fallback_search("shared")

        assert [r.id for r in results] == [second, first]
        assert all(r.score == FALLBACK_SCORE for r in results)

    def test_like_wildcards_are_literal(self, store):
        store.add("growth of 1000 units")
        store.add("coverage at 100% now")

        assert [r.content for r in store.fallback_search("100%")] == ["coverage at 100% now"]
        assert store.fallback_search("growth_of") == []

    def test_whitespace_query_matches_raw_text(self, store):
        store.add("two  spaces")
        store.add("onespace")
        assert [r.content for r in store.fallback_search("  ")] == ["two  spaces"]

    def test_filters(self, store):
        store.add("cache tip", area="solutions", project="web")
        store.add("cache tip", area="snippets", project="web")

        results = store.fallback_search("cache", area="solutions", project="web")
        assert [r.area for r in results] == ["solutions"]


class TestDegradation:
    """The index reports parse failures as a typed outcome; search branches on it."""

    @pytest.fixture
    def broken_index(self, store, monkeypatch):
        monkeypatch.setattr(
            store._backend,
            "match",
            lambda *args, **kwargs: IndexQuery(error="fts5: syntax error near \"\""),
        )
        return store

    def test_plain_search_degrades_to_fallback(self, broken_index):
        broken_index.add("the quick brown fox")

        results = broken_index.search("fox quick")

        assert [r.content for r in results] == ["the quick brown fox"]
        assert results[0].score == FALLBACK_SCORE

    def test_advanced_search_surfaces_error(self, broken_index):
        broken_index.add("the quick brown fox")

        with pytest.raises(SearchSyntaxError, match="syntax error"):
            broken_index.search("fox quick", enable_advanced_syntax=True)

    def test_match_returns_error_instead_of_raising(self, store):
        outcome = store._backend.match('"unclosed', 10)
        assert outcome.failed
        assert outcome.results == []

    def test_engine_falls_back_for_unparseable_plain_query(self, store):
        store.add("a***b")
        store.add("nothing special")

        results = store.search("***")

        assert [r.content for r in results] == ["a***b"]
        assert results[0].score == FALLBACK_SCORE


class _LockedConnection:
    """Connection stand-in whose queries fail the way a locked database does."""

    def execute(self, *args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    def close(self):
        pass


class TestEngineFailures:
    @pytest.mark.parametrize(
        "message",
        [
            'fts5: syntax error near ""',
            "unterminated string",
            "no such column: nosuch",
            "unknown special query: foo",
        ],
    )
    def test_grammar_errors_recognized(self, message):
        assert is_query_syntax_error(sqlite3.OperationalError(message))

    @pytest.mark.parametrize("message", ["database is locked", "disk I/O error", "attempt to write a readonly database"])
    def test_engine_errors_not_treated_as_grammar(self, message):
        assert not is_query_syntax_error(sqlite3.OperationalError(message))

    def test_column_filter_on_unknown_column_is_a_query_error(self, store):
        outcome = store._backend.match("nosuch:word", 10)
        assert outcome.failed

    @pytest.mark.parametrize("advanced", [False, True])
    def test_locked_database_raises_storage_error(self, store, monkeypatch, advanced):
        store.add("some text")
        monkeypatch.setattr(store._backend, "_connection", _LockedConnection())

        with pytest.raises(StorageIOError, match="database is locked"):
            store.search("text", enable_advanced_syntax=advanced)
