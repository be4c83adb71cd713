from utils.url_tools import normalize_url, urls_diverged, is_http_url


def test_normalize_url_keeps_origin_and_path():
    assert normalize_url("https://Example.com/tickets/?page=2#top") == "https://example.com/tickets"
    assert normalize_url("https://example.com") == "https://example.com/"
    assert normalize_url("") == ""


def test_urls_diverged_on_path_or_origin():
    assert urls_diverged("https://example.com/tickets", "https://example.com/login")
    assert urls_diverged("https://example.com/tickets", "https://other.example.com/tickets")
    assert not urls_diverged("https://example.com/tickets", "https://example.com/tickets/?sort=asc")


def test_blank_locations_never_diverge():
    assert not urls_diverged("https://example.com/tickets", "about:blank")
    assert not urls_diverged("https://example.com/tickets", None)
    assert not urls_diverged(None, "https://example.com/login")


def test_is_http_url():
    assert is_http_url("http://example.com/x")
    assert is_http_url(" https://example.com ")
    assert not is_http_url("ftp://example.com")
    assert not is_http_url("example.com/tickets")
    assert not is_http_url(None)
