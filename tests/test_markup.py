import htmlbatch.markup as markup


def test_round_trip_preserves_well_formed_fragment():
    source = '<h1 class="title">Title</h1>\n<p>Some <b>bold</b> text</p>\n<p>Second</p>'

    tree = markup.parse_markup(source)

    assert markup.serialize_markup(tree) == source


def test_parse_lowercases_tag_names():
    tree = markup.parse_markup("<H2>Upper</H2><P>text</P>")

    assert [el.name for el in markup.find_elements(tree)] == ["h2", "p"]
    assert markup.serialize_markup(tree) == "<h2>Upper</h2><p>text</p>"


def test_parse_recovers_from_malformed_fragment():
    tree = markup.parse_markup("<p>unclosed <b>bold")

    result = markup.serialize_markup(tree)
    assert "unclosed" in result
    assert "bold" in result


def test_body_is_used_as_root_when_present():
    tree = markup.parse_markup("<html><body><p>inside</p></body></html>")

    assert markup.serialize_markup(tree) == "<p>inside</p>"


def test_find_elements_returns_document_order():
    tree = markup.parse_markup("<div><p>a</p><span>b</span></div><h1>c</h1>")

    assert [el.name for el in markup.find_elements(tree)] == ["div", "p", "span", "h1"]
    headers = markup.find_elements(tree, markup.is_header)
    assert [el.name for el in headers] == ["h1"]


def test_remove_element_drops_trailing_blank_text():
    tree = markup.parse_markup("<h4>Intro</h4>\n<h5>Title</h5>")
    (h4,) = markup.find_elements(tree, lambda el: el.name == "h4")

    markup.remove_element(h4)

    assert markup.serialize_markup(tree) == "<h5>Title</h5>"


def test_remove_element_keeps_trailing_non_blank_text():
    tree = markup.parse_markup("<h4>Intro</h4>tail<p>x</p>")
    (h4,) = markup.find_elements(tree, lambda el: el.name == "h4")

    markup.remove_element(h4)

    assert markup.serialize_markup(tree) == "tail<p>x</p>"


def test_replace_element_moves_children_and_keeps_position():
    tree = markup.parse_markup('<div><h3 id="x">A <i>b</i></h3>tail</div>')
    (h3,) = markup.find_elements(tree, lambda el: el.name == "h3")

    markup.replace_element(h3, markup.new_element(tree, "h1"))

    assert markup.serialize_markup(tree) == "<div><h1>A <i>b</i></h1>tail</div>"


def test_set_inner_markup_reparses_children():
    tree = markup.parse_markup("<p>a</p>")
    (p,) = markup.find_elements(tree)

    markup.set_inner_markup(p, "b <i>c</i>")

    assert markup.inner_markup(p) == "b <i>c</i>"
    assert [el.name for el in markup.find_elements(tree)] == ["p", "i"]


def test_text_helpers():
    tree = markup.parse_markup("<div>one <b>two</b></div>")
    (div, _) = markup.find_elements(tree)

    assert markup.text_content(div) == "one two"
    assert markup.has_child_elements(div)
    assert markup.fragment_text("<h2>A <em>B</em></h2>") == "A B"


def test_parse_closes_unclosed_paragraphs_like_a_browser():
    tree = markup.parse_markup("<p>one<p>two<ul><li>a<li>b</ul>")

    assert markup.serialize_markup(tree) == "<p>one</p><p>two</p><ul><li>a</li><li>b</li></ul>"
    assert not any(markup.has_child_elements(p) for p in markup.find_elements(tree, lambda el: el.name == "p"))


def test_parse_keeps_leading_whitespace():
    tree = markup.parse_markup("\n<p>x</p>")

    assert markup.serialize_markup(tree) == "\n<p>x</p>"
