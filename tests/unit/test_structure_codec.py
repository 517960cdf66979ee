# tests/unit/test_structure_codec.py
"""针对 HTML 结构编解码器的单元测试。"""

from pytest_mock import MockerFixture

from enrich_hub import structure_codec
from enrich_hub.structure_codec import (
    clean_translation_artifacts,
    decode,
    encode,
    html_to_text,
    looks_like_html,
    scrub_tokens,
)


def test_encode_replaces_inline_tags_with_tokens() -> None:
    text, tags = encode("<p>Hello <strong>bold</strong> world</p>")

    assert text == "Hello [[TAG_0]]bold[[TAG_1]] world"
    assert tags.fragment("[[TAG_0]]") == "<strong>"
    assert tags.fragment("[[TAG_1]]") == "</strong>"


def test_encode_keeps_link_text_translatable() -> None:
    text, tags = encode('Read <a href="https://x.test/a">the article</a> now.')

    assert text == "Read [[TAG_0]]the article[[TAG_1]] now."
    assert tags.fragment("[[TAG_0]]") == '<a href="https://x.test/a">'
    assert tags.fragment("[[TAG_1]]") == "</a>"


def test_encode_void_elements_and_strips_unknown_tags() -> None:
    text, tags = encode('Line<br/>next <img src="a.png" alt=""> <font>plain</font>')

    assert text == "Line[[TAG_0]]next [[TAG_1]] plain"
    assert len(tags) == 2


def test_encode_turns_blocks_into_paragraph_breaks() -> None:
    text, _ = encode("<div><p>Uno.</p><p>Dos.</p></div>")
    assert text == "Uno.\n\nDos."


def test_encode_empty_input() -> None:
    text, tags = encode("   ")
    assert text == ""
    assert len(tags) == 0


def test_decode_restores_fragments_and_wraps_paragraphs() -> None:
    source = "<p>Hello <em>big</em> world.</p><p>Second <b>one</b>.</p>"
    encoded, tags = encode(source)
    translated = (
        encoded.replace("Hello", "Hola")
        .replace("big", "gran")
        .replace("world", "mundo")
        .replace("Second", "Segundo")
        .replace("one", "uno")
    )

    assert decode(translated, tags) == (
        "<p>Hola <em>gran</em> mundo.</p>\n<p>Segundo <b>uno</b>.</p>"
    )


def test_decode_scrubs_orphan_tokens_with_warning(mocker: MockerFixture) -> None:
    mock_logger = mocker.patch.object(structure_codec, "logger")
    _, tags = encode("A <b>b</b> c")

    result = decode("A [[TAG_0]]b[[TAG_1]] c [[TAG_7]]", tags)

    assert result == "<p>A <b>b</b> c</p>"
    mock_logger.warning.assert_called_once()
    assert mock_logger.warning.call_args.kwargs["orphan_count"] == 1


def test_decode_restores_only_first_copy_of_a_duplicated_token() -> None:
    _, tags = encode("x <i>y</i>")
    result = decode("x [[TAG_0]]y[[TAG_1]] [[TAG_0]]", tags)
    assert result == "<p>x <i>y</i></p>"


def test_scrub_tokens_counts_removed_tokens() -> None:
    assert scrub_tokens("a [[TAG_1]] b [[TAG_22]]") == ("a  b ", 2)


def test_looks_like_html() -> None:
    assert looks_like_html("texto con <b>negrita</b>")
    assert not looks_like_html("5 < 6 and 7 > 3")


def test_html_to_text_drops_scripts_and_entities() -> None:
    html = "<p>Caf&eacute; <script>alert(1)</script>y <style>p{}</style>t&eacute;</p>"
    assert html_to_text(html) == "Café y té"


def test_clean_translation_artifacts() -> None:
    dirty = "Hola {{tag_3}} mundo [2] , que tal {0} ?"
    assert clean_translation_artifacts(dirty) == "Hola mundo, que tal?"


def test_clean_translation_artifacts_keeps_codec_tokens() -> None:
    text = "Hola [[TAG_0]]mundo[[TAG_1]]."
    assert clean_translation_artifacts(text) == text
