from lxml import etree

from novelfetch.workflows.extract_utils import (
    PLACEHOLDER_CONTENT,
    extract_chapter_content,
    score_candidate,
)

BASE = "https://novels.example/novel/chapter-1"

STORY = " ".join(["The rain kept falling over the quiet harbor town while Mira waited."] * 3)


def _parses_as_xml(fragment):
    return etree.fromstring(fragment.encode("utf-8")) is not None


def test_empty_and_tagless_input_yield_placeholder():
    assert extract_chapter_content("", BASE) == PLACEHOLDER_CONTENT
    assert extract_chapter_content("just some words, no markup", BASE) == PLACEHOLDER_CONTENT
    assert PLACEHOLDER_CONTENT == '<div class="chapter-content"><p>No content extracted.</p></div>'


def test_junk_only_page_yields_placeholder():
    html = "<html><body><nav>Menu</nav><script>var x = 1;</script><footer>(c) site</footer></body></html>"
    assert extract_chapter_content(html, BASE) == PLACEHOLDER_CONTENT


def test_head_only_document_yields_placeholder():
    html = "<html><head><title>Chapter 1</title></head></html>"
    assert extract_chapter_content(html, BASE) == PLACEHOLDER_CONTENT


def test_priority_selector_is_used_and_junk_removed():
    paragraphs = "".join(f"<p>{STORY} ({i})</p>" for i in range(3))
    html = f"""
    <html><body>
      <nav>Site menu</nav>
      <div id="chapter-content">{paragraphs}<script>track()</script></div>
      <div class="other">{STORY}</div>
    </body></html>
    """
    result = extract_chapter_content(html, BASE)

    assert result.startswith('<div class="chapter-content">')
    assert result.endswith("</div>")
    assert "(2)" in result
    assert "Site menu" not in result
    assert "track()" not in result
    assert 'class="other"' not in result
    assert _parses_as_xml(result)


def test_density_fallback_skips_link_farms():
    farm = "".join(f'<a href="/novel/chapter-{i}">Chapter number {i} of the saga</a> ' for i in range(30))
    story = "".join(f"<p>{STORY} [{i}]</p>" for i in range(5))
    html = f'<html><body><div class="links">{farm}</div><div class="story">{story}</div></body></html>'

    result = extract_chapter_content(html, BASE)

    assert "[4]" in result
    assert "Chapter number 3 of the saga" not in result


def test_score_candidate_rejects_short_and_link_heavy_nodes():
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(
        f'<div id="short"><p>tiny</p></div><div id="farm">{"<a href=/x>link text here</a>" * 40}</div>'
        f'<div id="story"><p>{STORY}</p><p>{STORY}</p></div>',
        "lxml",
    )
    assert score_candidate(soup.find(id="short")) is None
    assert score_candidate(soup.find(id="farm")) is None
    candidate = score_candidate(soup.find(id="story"))
    assert candidate is not None
    assert candidate.paragraphs == 2
    assert candidate.nested_divs == 0
    assert candidate.score == 20 * 2 + 0.05 * candidate.text_len


def test_entities_are_serialized_numerically():
    html = "<html><body><p>A&nbsp;B&copy;C&amp;D</p></body></html>"
    result = extract_chapter_content(html, BASE)

    assert result == '<div class="chapter-content"><p>A&#160;B&#169;C&amp;D</p></div>'
    assert _parses_as_xml(result)


def test_lazy_images_are_resolved_and_stripped():
    html = """
    <html><body>
      <p>The map was pinned to the wall.</p>
      <p><img src="/static/placeholder.gif" data-src="/images/map.png" class="lazy"
              width="300" onclick="zoom()" srcset="/images/map@2x.png 2x"></p>
    </body></html>
    """
    result = extract_chapter_content(html, BASE)

    assert 'src="https://novels.example/images/map.png"' in result
    assert 'alt="Image"' in result
    for attr in ("data-src", "onclick", "srcset", "width", "class="):
        assert attr not in result.split('<div class="chapter-content">', 1)[1]
    assert _parses_as_xml(result)


def test_links_are_absolute_and_cleaned():
    html = """
    <html><body>
      <p>See the <a href="../glossary?term=a&amp;b" target="_blank" class="btn" style="color:red"
             onmouseover="x()">glossary entry</a> for details.</p>
    </body></html>
    """
    result = extract_chapter_content(html, BASE)

    assert 'href="https://novels.example/glossary?term=a&amp;b"' in result
    for attr in ("target=", "style=", "onmouseover", 'class="btn"'):
        assert attr not in result
    assert _parses_as_xml(result)


def test_boilerplate_hidden_and_comments_removed():
    html = """
    <html><body>
      <p>She opened the door slowly.</p>
      <p>Translated by Moonlight Group</p>
      <p>Join our Discord for updates!</p>
      <p style="display: none">secret watermark</p>
      <!-- tracking comment -->
      <p>Next Chapter</p>
    </body></html>
    """
    result = extract_chapter_content(html, BASE)

    assert "She opened the door slowly." in result
    for noise in ("Translated by", "Discord", "secret watermark", "tracking comment", "Next Chapter"):
        assert noise not in result


def test_leaf_divs_become_paragraphs_and_empties_are_dropped():
    html = """
    <html><body>
      <div class="line" data-idx="1">First line of dialogue.</div>
      <p></p>
      <span>   </span>
      <p>Between<br>lines</p>
      <p><img src="/images/divider.png"></p>
      <hr>
    </body></html>
    """
    result = extract_chapter_content(html, BASE)

    assert "<p>First line of dialogue.</p>" in result
    assert "<p></p>" not in result
    assert "<span>" not in result
    assert "<br/>" in result
    assert "divider.png" in result
    assert "<hr/>" in result
    assert _parses_as_xml(result)


def test_output_is_always_wellformed_xml():
    html = """
    <html><body><div class="chapter-content">
      <p>Tom &amp; Jerry said &quot;hi&quot; &mdash; then left &hellip;</p>
      <p>AT&T prices &lt; 5 &euro; and caf&eacute; &#x263A;</p>
      <p>""" + STORY + STORY + """</p>
    </div></body></html>
    """
    result = extract_chapter_content(html, BASE)

    assert "&mdash;" not in result
    assert "&#8212;" in result
    assert "&#233;" in result
    assert _parses_as_xml(result)


def test_prefixed_attributes_and_tags_are_dropped():
    html = (
        '<div id="content"><p :class="x" v-bind:title="y" x-on:click="z" xmlns:v="urn:v" title="kept">'
        + STORY
        + STORY
        + '<o:p>office words</o:p></p></div>'
    )
    result = extract_chapter_content(html, BASE)

    assert ":class" not in result
    assert "v-bind" not in result
    assert "x-on" not in result
    assert "xmlns" not in result
    assert "<o:p" not in result
    assert "office words" in result
    assert 'title="kept"' in result
    assert _parses_as_xml(result)


def test_forbidden_control_characters_are_removed():
    html = '<div id="content"><p title="a\x02b">' + STORY + STORY + " \x01 bell\x08 x &#1; y\x0c</p></div>"
    result = extract_chapter_content(html, BASE)

    for ch in ("\x01", "\x02", "\x08", "\x0c"):
        assert ch not in result
    assert "&#1;" not in result
    assert "bell" in result
    assert _parses_as_xml(result)
