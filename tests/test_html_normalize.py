from bs4 import BeautifulSoup

from novelfetch.workflows.html_normalize import (
    collapse_whitespace,
    decode_bytes_auto,
    is_safe_xml_attribute,
    is_valid_xml_name,
    minimal_text_fix,
    serialize_node,
    to_strict_xml_entities,
)


def test_named_entities_become_numeric():
    markup = "&nbsp;&copy;&amp;&lt;&gt;&quot;&apos;"
    assert to_strict_xml_entities(markup) == "&#160;&#169;&amp;&lt;&gt;&quot;&#39;"


def test_unknown_entities_and_bare_ampersands_are_escaped():
    markup = "&bogus; AT&T &#169; &#xA9; & done"
    assert to_strict_xml_entities(markup) == "&amp;bogus; AT&amp;T &#169; &#xA9; &amp; done"


def test_strict_entities_on_empty_input():
    assert to_strict_xml_entities("") == ""


def test_decode_uses_charset_header():
    body = "café".encode("latin-1")
    assert decode_bytes_auto(body, {"Content-Type": "text/html; charset=ISO-8859-1"}) == "café"


def test_decode_falls_back_to_detection():
    text = "Ангел смерти стоял у двери и ждал, пока герой закончит свою последнюю главу."
    body = text.encode("utf-8")
    assert decode_bytes_auto(body) == text
    assert decode_bytes_auto(body, {"content-type": "text/html; charset=x-not-real"}) == text


def test_decode_empty_body():
    assert decode_bytes_auto(b"") == ""


def test_minimal_text_fix_repairs_mojibake_and_noise():
    assert minimal_text_fix("cafÃ©") == "café"
    assert minimal_text_fix("a\u200bb\x00c\ufeff") == "abc"
    assert minimal_text_fix("") == ""


def test_collapse_whitespace():
    assert collapse_whitespace("  Chapter \n\t 12  ") == "Chapter 12"
    assert collapse_whitespace(None) == ""


def test_xml_names():
    assert is_valid_xml_name("data-idx")
    assert not is_valid_xml_name("xml:lang")
    assert not is_valid_xml_name(":class")
    assert not is_valid_xml_name("v-bind:title")
    assert not is_valid_xml_name("")
    assert not is_valid_xml_name("1st")
    assert not is_valid_xml_name('a"b')


def test_attribute_names_without_namespace_bindings_are_unsafe():
    assert is_safe_xml_attribute("xml:lang")
    assert is_safe_xml_attribute("xml:space")
    assert is_safe_xml_attribute("data-idx")
    assert not is_safe_xml_attribute("x-on:click")
    assert not is_safe_xml_attribute("xmlns")
    assert not is_safe_xml_attribute("xmlns:v")


def test_serialize_body_emits_children_only():
    soup = BeautifulSoup("<html><body><p>One&nbsp;two</p></body></html>", "lxml")
    assert serialize_node(soup.body) == "<p>One&#160;two</p>"
    assert serialize_node(soup.p) == "<p>One&#160;two</p>"


def test_serialize_escapes_attribute_values():
    soup = BeautifulSoup('<a href="/x?a=1&amp;b=2">link</a>', "lxml")
    assert serialize_node(soup.a) == '<a href="/x?a=1&amp;b=2">link</a>'


def test_serialize_drops_characters_xml_forbids():
    soup = BeautifulSoup("<p></p>", "lxml")
    soup.p.string = "x\x0cy\x01z\ttab"
    soup.p["title"] = "a\x02b"
    assert serialize_node(soup.p) == '<p title="ab">xyz\ttab</p>'
