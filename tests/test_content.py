import pytest

from monitoring import content
from monitoring.errors import InvalidWatchError
from monitoring.types import PageSnapshot

URL = "https://example.com/tickets"

A_AND_B_OR_C = [
    {"term": "A", "joiner": None},
    {"term": "B", "joiner": "AND"},
    {"term": "C", "joiner": "OR"},
]


def test_and_binds_tighter_than_or():
    assert content.matches("only c here", A_AND_B_OR_C)
    assert content.matches("a and b", A_AND_B_OR_C)
    assert not content.matches("just a", A_AND_B_OR_C)
    assert not content.matches("just b", A_AND_B_OR_C)


def test_matching_is_case_insensitive_substring():
    spec = [{"term": "Sold Out", "joiner": None}]
    assert content.matches("Tickets: SOLD OUT for today", spec)
    assert not content.matches("Tickets: sold", spec)


def test_null_joiner_after_first_term_starts_new_group():
    spec = content.normalize_match_spec([
        {"term": "alpha", "joiner": None},
        {"term": "beta", "joiner": None},
    ])
    assert content.group_terms(spec) == [["alpha"], ["beta"]]
    assert content.matches("beta only", spec)


def test_or_then_null_joiner_matches_trailing_term():
    spec = content.normalize_match_spec([
        {"term": "A", "joiner": None},
        {"term": "B", "joiner": "OR"},
        {"term": "C", "joiner": None},
    ])
    assert content.matches("...C present...", spec)
    assert not content.matches("nothing here", spec)


def test_normalize_match_spec_cleans_entries():
    spec = content.normalize_match_spec([
        {"term": "  first ", "joiner": "and"},
        {"term": "second", "joiner": "and"},
        "third",
    ])
    assert spec == [
        {"term": "first", "joiner": None},
        {"term": "second", "joiner": "AND"},
        {"term": "third", "joiner": None},
    ]


@pytest.mark.parametrize("spec", [
    [],
    None,
    [{"term": "   ", "joiner": None}],
    [{"term": "a", "joiner": None}, {"term": "b", "joiner": "XOR"}],
])
def test_normalize_match_spec_rejects_invalid(spec):
    with pytest.raises(InvalidWatchError):
        content.normalize_match_spec(spec)


def test_describe_match_spec():
    assert content.describe_match_spec(A_AND_B_OR_C) == '"A" AND "B" OR "C"'


def test_page_text_drops_scripts_and_styles():
    html = "<html><head><style>.x{}</style><script>var hidden = 1;</script></head><body><p>Visible</p></body></html>"
    assert content.page_text(html) == "Visible"


def test_no_snapshot_means_no_content():
    assert content.evaluate_page(None, A_AND_B_OR_C, URL).outcome == content.NO_CONTENT


def test_empty_page_means_no_content():
    page = PageSnapshot(url=URL, html="<html><body>  </body></html>")
    assert content.evaluate_page(page, A_AND_B_OR_C, URL) == content.Evaluation(content.NO_CONTENT, URL)


def test_error_phrase_is_error_page():
    page = PageSnapshot(url=URL, html="<body>This site can't be reached. ERR_CONNECTION_RESET</body>")
    assert content.evaluate_page(page, A_AND_B_OR_C, URL).outcome == content.ERROR_PAGE


def test_keyword_only_counts_on_short_pages():
    short = PageSnapshot(url=URL, html="<body>Access forbidden</body>")
    assert content.evaluate_page(short, [{"term": "x", "joiner": None}], URL).outcome == content.ERROR_PAGE

    long_text = "Plenty of regular event listings. " * 30 + "Error handling workshop on Friday."
    long_page = PageSnapshot(url=URL, html=f"<body>{long_text}</body>")
    assert content.evaluate_page(long_page, [{"term": "x", "joiner": None}], URL).outcome == content.NO_MATCH


def test_error_page_wins_over_redirect():
    page = PageSnapshot(url="https://example.com/blocked", html="<body>You have been blocked</body>")
    assert content.evaluate_page(page, A_AND_B_OR_C, URL).outcome == content.ERROR_PAGE


def test_redirect_is_reported_with_current_url():
    page = PageSnapshot(url="https://example.com/login?next=/tickets", html="<body>Please sign in to continue</body>")
    result = content.evaluate_page(page, A_AND_B_OR_C, URL)
    assert result.outcome == content.REDIRECTED
    assert result.current_url == "https://example.com/login?next=/tickets"


def test_query_string_change_is_not_a_redirect():
    page = PageSnapshot(url=URL + "?page=2", html="<body>C is on sale</body>")
    assert content.evaluate_page(page, A_AND_B_OR_C, URL).outcome == content.MATCHED


def test_no_match():
    page = PageSnapshot(url=URL, html="<body>Nothing interesting today</body>")
    assert content.evaluate_page(page, A_AND_B_OR_C, URL).outcome == content.NO_MATCH
