import pytest

from sitescope.parsing.html_extractor import extract_anchors, extract_page_data


PAGE = """
<html lang="en-GB">
<head>
  <title>  Sample Page  </title>
  <meta name="description" content=" A short description ">
  <meta name="keywords" content="seo, crawler">
  <meta name="robots" content="index, follow">
  <link rel="canonical" href="https://example.com/sample">
  <link rel="next" href="/sample?page=2">
  <link rel="amphtml" href="https://example.com/amp/sample">
  <script>var x = 1;</script>
  <style>.cls {}</style>
</head>
<body>
  <h1>Main heading</h1>
  <h2>First</h2><h2>  </h2><h2>Second</h2>
  <p>Hello world.</p>
  <noscript>ignore me</noscript>
  <img src="/a.png">
  <a href="/about">About us</a>
  <a href="https://other.com/" rel="nofollow noopener" target="_blank">Other</a>
  <a href="/gallery"><img src="/g.png" alt="Gallery"></a>
</body>
</html>
"""


def test_extract_page_data_reads_seo_fields():
    data = extract_page_data(PAGE)

    assert data.title == "Sample Page"
    assert data.meta_description == "A short description"
    assert data.meta_keywords == "seo, crawler"
    assert data.meta_robots == "index, follow"
    assert data.language == "en-GB"
    assert data.canonical_url == "https://example.com/sample"
    assert data.rel_next == "/sample?page=2"
    assert data.rel_prev is None
    assert data.amphtml == "https://example.com/amp/sample"
    assert data.h1 == ["Main heading"]
    assert data.h2 == ["First", "Second"]
    assert data.link_count == 3
    assert data.image_count == 2


def test_extract_page_data_text_skips_scripts_and_styles():
    data = extract_page_data(PAGE)

    assert "Hello world." in data.text
    assert "var x" not in data.text
    assert "ignore me" not in data.text


def test_extract_page_data_handles_missing_title():
    data = extract_page_data("<html><head></head><body></body></html>")

    assert data.title is None
    assert data.h1 == []
    assert data.text == ""


def test_extract_anchors_captures_link_details():
    anchors = extract_anchors("https://example.com/base/", PAGE)

    assert [anchor.href for anchor in anchors] == [
        "https://example.com/about",
        "https://other.com/",
        "https://example.com/gallery",
    ]
    about, other, gallery = anchors
    assert about.anchor_text == "About us" and about.follow and about.position == 1
    assert other.follow is False
    assert other.rel == "nofollow noopener"
    assert other.target == "_blank"
    assert gallery.alt_text == "Gallery"
    assert gallery.origin == "html"


@pytest.mark.parametrize(
    "href,expected",
    [
        ("/about", "https://example.com/about"),
        ("../relative", "https://example.com/relative"),
        ("javascript:void(0)", None),
        ("mailto:hi@example.com", None),
    ],
)
def test_extract_anchors_resolves_and_skips_non_http(href, expected):
    html = f"<html><body><a href='{href}'>Link</a></body></html>"
    anchors = extract_anchors("https://example.com/base/", html)

    if expected is None:
        assert anchors == []
    else:
        assert [anchor.href for anchor in anchors] == [expected]


def test_anchor_positions_count_skipped_links():
    html = "<a href='mailto:x@y.z'>mail</a><a href='/kept'>kept</a>"
    anchors = extract_anchors("https://example.com/", html)

    assert len(anchors) == 1
    assert anchors[0].position == 2
