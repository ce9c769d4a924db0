from pathlib import Path

from ipgate.allowmap import (
    clean_text,
    load_allow_map,
    lookup_specs,
    normalize_newlines,
    normalize_spaces,
    parse_allow_map,
    parse_rule_line,
    slug_variants,
    strip_block_comments,
    strip_bom,
    strip_format_chars,
    strip_markup,
    strip_markup_comments,
    trim,
)
from ipgate.diagnostics import Diagnostics


def test_same_slug_on_several_lines_is_merged():
    text = "a => 1.1.1.1\na => 2.2.2.2"
    assert parse_allow_map(text) == {"a": ["1.1.1.1", "2.2.2.2"]}


def test_merge_keeps_existing_first_and_drops_duplicates():
    text = "a => 1.1.1.1, 3.3.3.3\na => 3.3.3.3, 2.2.2.2, 1.1.1.1"
    assert parse_allow_map(text) == {"a": ["1.1.1.1", "3.3.3.3", "2.2.2.2"]}


def test_comments_are_ignored():
    text = "\n".join(
        [
            "b => 3.3.3.3 // note",
            "# c => 4.4.4.4",
            "   // d => 5.5.5.5",
            "e => 6.6.6.6 # trailing",
            "/* f => 7.7.7.7",
            "   g => 8.8.8.8 */",
            "<!-- h => 9.9.9.9 -->",
            "&lt;! -- i => 1.2.3.4 -- &gt;",
        ]
    )
    assert parse_allow_map(text) == {"b": ["3.3.3.3"], "e": ["6.6.6.6"]}


def test_rich_text_markup_is_unwrapped():
    text = (
        "<p>restricted-page-1 =&gt; 203.0.113.10,203.0.113.0/24</p>"
        "<p>restricted-page-2 =&gt; 2001:db8::1<br />other =&gt; 198.51.100.1</p>"
    )
    assert parse_allow_map(text) == {
        "restricted-page-1": ["203.0.113.10", "203.0.113.0/24"],
        "restricted-page-2": ["2001:db8::1"],
        "other": ["198.51.100.1"],
    }


def test_invisible_characters_do_not_break_lines():
    text = "\ufeffa => 1.1.1.1\r\n\u200bb\u200b => 2.2.2.2\u00a0 \r\u200fc\u3000=>\u30003.3.3.3\u00ad"
    assert parse_allow_map(text) == {"a": ["1.1.1.1"], "b": ["2.2.2.2"], "c": ["3.3.3.3"]}


def test_byte_order_mark_variants():
    assert parse_allow_map(b"\xef\xbb\xbfa => 1.1.1.1") == {"a": ["1.1.1.1"]}
    assert parse_allow_map("\u00ef\u00bb\u00bfa => 1.1.1.1") == {"a": ["1.1.1.1"]}


def test_percent_encoded_slug_is_registered_twice():
    allow_map = parse_allow_map("%E8%A8%B1%E5%8F%AF => 1.1.1.1")
    assert list(allow_map) == ["許可", "%E8%A8%B1%E5%8F%AF"]
    assert allow_map["許可"] == ["1.1.1.1"]
    assert allow_map["%E8%A8%B1%E5%8F%AF"] == ["1.1.1.1"]


def test_slug_slashes_are_trimmed():
    allow_map = parse_allow_map("/members/ => 1.1.1.1\n/docs/private/ => 2.2.2.2")
    assert allow_map == {"members": ["1.1.1.1"], "docs/private": ["2.2.2.2"]}


def test_malformed_lines_are_skipped_and_reported():
    diagnostics = Diagnostics()
    text = "just text\na =>\n=> 1.1.1.1\nb => ,, \nok => 1.1.1.1,, 2.2.2.2 ,"
    assert parse_allow_map(text, diagnostics) == {"ok": ["1.1.1.1", "2.2.2.2"]}
    assert len(diagnostics) == 4
    assert diagnostics.by_stage() == {"line": 4}


def test_entries_are_kept_verbatim():
    assert parse_allow_map("a => junk, 10.0.0.0/99") == {"a": ["junk", "10.0.0.0/99"]}


def test_parse_is_repeatable():
    text = "<p>a =&gt; 1.1.1.1</p>\n# x\nb => 2001:db8::/32\na => 1.1.1.2"
    assert parse_allow_map(text) == parse_allow_map(text)


def test_empty_input():
    assert parse_allow_map("") == {}
    assert parse_allow_map(b"") == {}
    assert parse_allow_map("# only comments\n\n// here") == {}


def test_lookup_specs_tries_each_form():
    allow_map = parse_allow_map("%E8%A8%B1%E5%8F%AF => 1.1.1.1\nmembers => 2.2.2.2")
    assert lookup_specs(allow_map, "許可") == ["1.1.1.1"]
    assert lookup_specs(allow_map, "%E8%A8%B1%E5%8F%AF") == ["1.1.1.1"]
    assert lookup_specs(allow_map, "/members/") == ["2.2.2.2"]
    assert lookup_specs(allow_map, "other") is None
    assert lookup_specs(allow_map, "") is None


def test_load_allow_map(tmp_path: Path):
    path = tmp_path / "allowlist.txt"
    path.write_bytes("\ufeffmembers => 203.0.113.0/24\n".encode("utf-8"))
    assert load_allow_map(path) == {"members": ["203.0.113.0/24"]}


def test_individual_stages():
    assert strip_markup("<script>a => 1.1.1.1</script><b>x</b>\n<i>y</i>") == "x\ny"
    assert strip_markup("a <!-- b => 1.1.1.1 --> c") == "a  c"
    assert strip_bom("\ufeffx") == "x"
    assert strip_format_chars("a\u200eb\u202ec\u2066") == "abc"
    assert normalize_spaces("a\u00a0b\u3000c\u200bd") == "a b cd"
    assert normalize_newlines("a\r\nb\rc") == "a\nb\nc"
    assert strip_block_comments("a/* x\n y */b/* z */c") == "abc"
    assert strip_markup_comments("a<! -- x\n -- >b<!--y-->c") == "abc"
    assert trim("\u00ad\u200b x \ufeff\u3000") == "x"


def test_clean_text_keeps_line_structure():
    assert clean_text("<p>a</p><p>b</p>").split("\n")[:2] == ["a", "b"]


def test_rule_line_helpers():
    assert slug_variants(" /a%20b/ ") == ["a b", "a%20b"]
    assert slug_variants("plain") == ["plain"]
    assert slug_variants(" / ") == []
    assert parse_rule_line("a=>1.1.1.1 , 2.2.2.2") == (["a"], ["1.1.1.1", "2.2.2.2"])
    assert parse_rule_line("no separator") is None
