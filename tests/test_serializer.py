import pytest

from Markus.config import MarkdownOptions
from Markus.exceptions import SerializationError
from Markus.markdown_serializer import backticks_for, cell_text, serialize_markdown
from Markus.model import Node, create_mark, create_node, create_table, text_node


def doc(*children):
    return create_node("doc", children=list(children))


def para(*children):
    return create_node("paragraph", children=list(children))


def cell(type_name, text=None):
    return create_node(type_name, children=[para(text_node(text)) if text else para()])


def row(*cells):
    return create_node("table_row", children=list(cells))


def item(text):
    return create_node("list_item", children=[para(text_node(text))])


def test_serialize_headings():
    markdown = serialize_markdown(
        doc(
            create_node("heading", {"level": 1}, [text_node("Heading 1")]),
            create_node("heading", {"level": 2}, [text_node("Heading 2")]),
        )
    )
    assert markdown == "# Heading 1\n\n## Heading 2"


def test_serialize_bold_italic_strike():
    markdown = serialize_markdown(
        doc(
            para(
                text_node("bold", [create_mark("strong")]),
                text_node(" "),
                text_node("italic", [create_mark("em")]),
                text_node(" "),
                text_node("gone", [create_mark("strikethrough")]),
            )
        )
    )
    assert markdown == "**bold** *italic* ~~gone~~"


def test_mixable_marks_reuse_open_delimiters():
    markdown = serialize_markdown(
        doc(para(text_node("a", [create_mark("strong")]), text_node("b", [create_mark("em"), create_mark("strong")])))
    )
    assert markdown == "**a*b***"


def test_enclosing_whitespace_is_expelled():
    markdown = serialize_markdown(doc(para(text_node("a"), text_node(" b ", [create_mark("strong")]), text_node("c"))))
    assert markdown == "a **b** c"


def test_serialize_code_block():
    code = create_node("code_block", {"language": "typescript"}, [text_node("const x = 1")])
    assert serialize_markdown(doc(code)) == "```typescript\nconst x = 1\n```"


def test_code_block_without_language_keeps_trailing_newline_once():
    code = create_node("code_block", children=[text_node("a\nb\n")])
    assert serialize_markdown(doc(code)) == "```\na\nb\n```"


def test_serialize_bullet_list():
    markdown = serialize_markdown(doc(create_node("bullet_list", children=[item("Item 1"), item("Item 2")])))
    assert markdown == "- Item 1\n\n- Item 2"


def test_tight_lists_option():
    markdown = serialize_markdown(
        doc(create_node("bullet_list", children=[item("Item 1"), item("Item 2")])),
        MarkdownOptions(tight_lists=True),
    )
    assert markdown == "- Item 1\n- Item 2"


def test_ordered_list_markers_are_aligned():
    items = [item(str(n)) for n in range(2)]
    markdown = serialize_markdown(doc(create_node("ordered_list", {"order": 9}, items)))
    assert markdown == " 9. 0\n\n10. 1"


def test_ordered_list_continuation_indent():
    nested = create_node(
        "list_item",
        children=[para(text_node("first")), create_node("bullet_list", children=[item("inner")])],
    )
    markdown = serialize_markdown(doc(create_node("ordered_list", children=[nested])))
    assert markdown == "1. first\n\n   - inner"


def test_serialize_blockquote():
    markdown = serialize_markdown(doc(create_node("blockquote", children=[para(text_node("Quote")), para(text_node("More"))])))
    assert markdown == "> Quote\n>\n> More"


def test_horizontal_rule():
    assert serialize_markdown(doc(para(text_node("a")), create_node("horizontal_rule"))) == "a\n\n---"


def test_hard_breaks():
    single = para(text_node("a"), create_node("hard_break"), text_node("b"))
    double = para(text_node("a"), create_node("hard_break"), create_node("hard_break"), text_node("b"))
    trailing = para(text_node("a"), create_node("hard_break"))
    assert serialize_markdown(doc(single)) == "a  \nb"
    assert serialize_markdown(doc(double)) == "a  \nb"
    assert serialize_markdown(doc(trailing)) == "a"


def test_hard_break_inside_list_keeps_indent():
    li = create_node("list_item", children=[para(text_node("a"), create_node("hard_break"), text_node("b"))])
    assert serialize_markdown(doc(create_node("bullet_list", children=[li]))) == "- a  \n  b"


@pytest.mark.parametrize(
    "line, expected",
    [
        ("- b", "\\- b"),
        ("+ b", "\\+ b"),
        ("# b", "\\# b"),
        ("1. b", "1\\. b"),
        ("2) b", "2\\) b"),
        ("> b", "\\> b"),
    ],
)
def test_text_after_hard_break_is_escaped_as_line_start(line, expected):
    paragraph = para(text_node("a"), create_node("hard_break"), text_node(line))
    assert serialize_markdown(doc(paragraph)) == "a  \n" + expected


def test_text_after_hard_break_in_list_is_escaped():
    li = create_node("list_item", children=[para(text_node("a"), create_node("hard_break"), text_node("# b"))])
    assert serialize_markdown(doc(create_node("bullet_list", children=[li]))) == "- a  \n  \\# b"


def test_mid_line_text_is_not_escaped_as_line_start():
    paragraph = para(text_node("x", [create_mark("strong")]), text_node(" - b # c 1. d"))
    assert serialize_markdown(doc(paragraph)) == "**x** - b # c 1. d"


def test_comment_is_split_around_hard_break():
    comment = create_mark("comment", text="c")
    paragraph = para(text_node("a", [comment]), create_node("hard_break"), text_node("b", [comment]))
    assert serialize_markdown(doc(paragraph)) == (
        '<!-- COMMENT: "c" -->a<!-- /COMMENT -->  \n<!-- COMMENT: "c" -->b<!-- /COMMENT -->'
    )


def test_serialize_link():
    link = create_mark("link", href="https://example.com")
    titled = create_mark("link", href="https://example.com", title='Say "hi"')
    assert serialize_markdown(doc(para(text_node("site", [link])))) == "[site](https://example.com)"
    assert serialize_markdown(doc(para(text_node("site", [titled])))) == '[site](https://example.com "Say \\"hi\\"")'


def test_autolink_when_text_equals_href():
    link = create_mark("link", href="https://example.com/a_b*c")
    markdown = serialize_markdown(doc(para(text_node("see "), text_node("https://example.com/a_b*c", [link]))))
    assert markdown == "see <https://example.com/a_b*c>"


def test_no_autolink_without_scheme_or_with_title():
    relative = create_mark("link", href="page.md")
    titled = create_mark("link", href="https://e.com", title="t")
    assert serialize_markdown(doc(para(text_node("page.md", [relative])))) == "[page.md](page.md)"
    assert serialize_markdown(doc(para(text_node("https://e.com", [titled])))) == '[https://e.com](https://e.com "t")'


def test_inline_code():
    paragraph = para(text_node("Use "), text_node("code", [create_mark("code")]), text_node(" here"))
    assert serialize_markdown(doc(paragraph)) == "Use `code` here"


def test_inline_code_with_backtick_widens_delimiter():
    paragraph = para(text_node("Use "), text_node("a`b", [create_mark("code")]), text_node(" here"))
    assert serialize_markdown(doc(paragraph)) == "Use `` a`b `` here"


def test_backticks_for():
    assert backticks_for(text_node("plain"), -1) == "`"
    assert backticks_for(text_node("x``y`"), -1) == "``` "
    assert backticks_for(text_node("x``y`"), 1) == " ```"


def test_inline_code_is_not_escaped():
    paragraph = para(text_node("*_[x]_*", [create_mark("code")]))
    assert serialize_markdown(doc(paragraph)) == "`*_[x]_*`"


def test_text_escaping():
    assert serialize_markdown(doc(para(text_node("a*b [c] snake_case _x_")))) == "a\\*b \\[c\\] snake_case \\_x\\_"
    assert serialize_markdown(doc(para(text_node("# not a heading")))) == "\\# not a heading"
    assert serialize_markdown(doc(para(text_node("1. not a list")))) == "1\\. not a list"
    assert serialize_markdown(doc(para(text_node("- not a list")))) == "\\- not a list"
    assert serialize_markdown(doc(para(text_node("keep <div> &amp; text")))) == "keep \\<div> \\&amp; text"


def test_default_image_uses_markdown_syntax():
    image = create_node("image", {"src": "pic.png", "alt": "A picture", "title": "Cap"})
    assert serialize_markdown(doc(para(image))) == '![A picture](pic.png "Cap")'


def test_image_default_attributes_never_emit_tag():
    image = create_node("image", {"src": "pic.png", "align": "inline", "width": 100})
    assert serialize_markdown(doc(para(image))) == "![](pic.png)"


def test_sized_image_emits_tag():
    centered = create_node("image", {"src": "image.png", "align": "center"})
    narrow = create_node("image", {"src": "a.png", "alt": "A", "title": "T", "align": "left", "width": 50})
    assert serialize_markdown(doc(para(centered))) == '<img src="image.png" align="center">'
    assert serialize_markdown(doc(para(narrow))) == '<img src="a.png" alt="A" title="T" align="left" width="50%">'


def test_relative_src_replaces_src():
    plain = create_node("image", {"src": "file:///tmp/x/pic.png", "relativeSrc": "assets/pic.png"})
    sized = create_node("image", {"src": "file:///tmp/x/pic.png", "relativeSrc": "assets/pic.png", "width": 30})
    assert serialize_markdown(doc(para(plain))) == "![](assets/pic.png)"
    assert serialize_markdown(doc(para(sized))) == '<img src="assets/pic.png" width="30%">'


def test_comment_mark():
    comment = create_mark("comment", text="note")
    assert serialize_markdown(doc(para(text_node("text", [comment])))) == '<!-- COMMENT: "note" -->text<!-- /COMMENT -->'


def test_comment_text_is_escaped():
    comment = create_mark("comment", text='a "b"\n\\c')
    markdown = serialize_markdown(doc(para(text_node("x", [comment]))))
    assert markdown == '<!-- COMMENT: "a \\"b\\"\\n\\\\c" -->x<!-- /COMMENT -->'


def test_comment_wraps_overlapping_marks():
    comment = create_mark("comment", text="c")
    paragraph = para(
        text_node("a ", [comment]),
        text_node("b", [comment, create_mark("strong")]),
        text_node(" c", [comment]),
    )
    assert serialize_markdown(doc(paragraph)) == '<!-- COMMENT: "c" -->a **b** c<!-- /COMMENT -->'


def test_serialize_table():
    table = create_node(
        "table",
        children=[
            row(cell("table_header", "Header 1"), cell("table_header", "Header 2")),
            row(cell("table_cell", "Cell 1"), cell("table_cell", "Cell 2")),
        ],
    )
    assert serialize_markdown(doc(table)) == (
        "| Header 1 | Header 2 |\n"
        "| -------- | -------- |\n"
        "| Cell 1   | Cell 2   |\n"
    )


def test_table_minimum_width_and_equal_rows():
    table = create_node(
        "table",
        children=[
            row(cell("table_header", "A"), cell("table_header", "Longer header")),
            row(cell("table_cell", "1"), cell("table_cell")),
            row(cell("table_cell", "a much longer cell"), cell("table_cell", "2")),
        ],
    )
    lines = serialize_markdown(doc(table)).strip().split("\n")
    assert len(lines) == 4
    assert len({len(line) for line in lines}) == 1
    assert lines[1] == "| ------------------ | ------------- |"


def test_table_separator_depends_on_header_cells_not_position():
    single_header = create_node("table", children=[row(cell("table_header", "H"))])
    single_data = create_node("table", children=[row(cell("table_cell", "D"))])
    assert serialize_markdown(doc(single_header)) == "| H   |\n| --- |\n"
    assert serialize_markdown(doc(single_data)) == "| D   |\n"


def test_table_cell_text_escapes_pipes():
    table = create_node("table", children=[row(cell("table_header", "a|b")), row(cell("table_cell", "x"))])
    assert serialize_markdown(doc(table)).split("\n")[0] == "| a\\|b |"


def test_empty_table_renders_nothing():
    assert serialize_markdown(doc(create_node("table"))) == ""


def test_new_table_serializes_with_separator():
    markdown = serialize_markdown(doc(create_table(2, 2)))
    assert markdown == "|     |     |\n| --- | --- |\n|     |     |\n"


def test_blocks_after_table_are_separated():
    table = create_node("table", children=[row(cell("table_header", "A")), row(cell("table_cell", "1"))])
    markdown = serialize_markdown(doc(para(text_node("before")), table, para(text_node("after"))))
    assert markdown == "before\n\n| A   |\n| --- |\n| 1   |\n\nafter"


def test_cell_text_flattens_blocks():
    nested = create_node(
        "table_cell",
        children=[para(text_node("a", [create_mark("strong")]), text_node(" b")), create_node("blockquote", children=[para(text_node("q"))])],
    )
    assert cell_text(nested) == "a bq"


def test_unknown_node_type_raises():
    with pytest.raises(SerializationError):
        serialize_markdown(Node(type="doc", children=[Node(type="video")]))
