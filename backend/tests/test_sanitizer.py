"""Unit tests for the export sanitiser."""
from tally_migration.etl.sanitizer import (
    decode_bytes,
    sanitize_text,
    sanitize_xml,
    save_raw_backup,
    strip_invalid_char_refs,
    strip_invalid_chars,
)


class TestStripInvalidChars:
    def test_clean_xml_unchanged(self):
        text = "<ROOT><CHILD>Hello World</CHILD></ROOT>"
        clean, warnings = strip_invalid_chars(text)
        assert clean == text
        assert warnings == []

    def test_null_byte_removed(self):
        text = "<ROOT>Hello\x00World</ROOT>"
        clean, warnings = strip_invalid_chars(text)
        assert clean == "<ROOT>HelloWorld</ROOT>"
        assert len(warnings) == 1
        assert "invalid control character" in warnings[0]

    def test_multiple_control_chars_removed(self):
        text = "<ROOT>\x07\x08\x0bTest\x0c\x1fValue</ROOT>"
        clean, warnings = strip_invalid_chars(text)
        for char in ["\x07", "\x08", "\x0b", "\x0c", "\x1f"]:
            assert char not in clean
        assert warnings[0].startswith("Removed 5 invalid control character(s)")

    def test_tab_newline_carriage_return_preserved(self):
        """Tab, LF and CR are legal XML characters."""
        text = "<ROOT>\tHello\nWorld\r</ROOT>"
        clean, warnings = strip_invalid_chars(text)
        assert clean == text
        assert warnings == []


class TestStripInvalidCharRefs:
    def test_illegal_decimal_ref_removed(self):
        clean, warnings = strip_invalid_char_refs("<N>A&#4;B</N>")
        assert clean == "<N>AB</N>"
        assert "Removed 1 invalid character reference(s)" in warnings[0]

    def test_illegal_hex_ref_removed(self):
        clean, _ = strip_invalid_char_refs("<N>A&#x1F;B</N>")
        assert clean == "<N>AB</N>"

    def test_valid_refs_kept(self):
        text = "<N>&#65;&#x20AC;&#13;&#10;</N>"
        clean, warnings = strip_invalid_char_refs(text)
        assert clean == text
        assert warnings == []


class TestDecodeBytes:
    def test_utf8_passthrough(self):
        text, enc = decode_bytes(b"<ROOT>Hello</ROOT>")
        assert text == "<ROOT>Hello</ROOT>"
        assert enc == "utf-8"

    def test_utf8_bom_stripped(self):
        text, enc = decode_bytes(b"\xef\xbb\xbf<ROOT>BOM</ROOT>")
        assert text == "<ROOT>BOM</ROOT>"
        assert enc == "utf-8-bom"

    def test_utf16_le_bom(self):
        raw = b"\xff\xfe" + "<ROOT>LE</ROOT>".encode("utf-16-le")
        text, enc = decode_bytes(raw)
        assert text == "<ROOT>LE</ROOT>"
        assert enc == "utf-16-le-bom"

    def test_utf16_be_bom(self):
        raw = b"\xfe\xff" + "<ROOT>BE</ROOT>".encode("utf-16-be")
        text, enc = decode_bytes(raw)
        assert text == "<ROOT>BE</ROOT>"
        assert enc == "utf-16-be-bom"

    def test_windows1252_fallback(self):
        text, enc = decode_bytes(b"<ROOT>\x93Quoted\x94</ROOT>")
        assert enc == "windows-1252"
        assert "“Quoted”" in text


class TestSanitizeText:
    def test_bom_encoding_not_reported(self):
        raw = b"\xff\xfe" + "{}".encode("utf-16-le")
        text, warnings = sanitize_text(raw, source_path="x.json")
        assert text == "{}"
        assert warnings == []

    def test_guessed_encoding_reported(self):
        text, warnings = sanitize_text(b'{"n": "\x93q\x94"}')
        assert "\u201cq\u201d" in text
        assert warnings == ["Re-encoded from windows-1252 to UTF-8"]

    def test_utf8_bom_not_reported(self):
        _, warnings = sanitize_text(b"\xef\xbb\xbf{}")
        assert warnings == []


class TestSanitizeXml:
    def test_valid_xml_passes(self):
        raw = b'<?xml version="1.0" encoding="utf-8"?><ROOT><CHILD>Test</CHILD></ROOT>'
        clean, warnings = sanitize_xml(raw, source_path="test.xml")
        assert b"<ROOT><CHILD>Test</CHILD></ROOT>" in clean
        assert warnings == []

    def test_control_char_in_xml(self):
        raw = b'<?xml version="1.0"?><ROOT><V>Bad\x01Char</V></ROOT>'
        clean, warnings = sanitize_xml(raw, source_path="test.xml")
        assert b"\x01" not in clean
        assert any("control character" in w for w in warnings)

    def test_encoding_declaration_rewritten(self):
        raw = b'<?xml version="1.0" encoding="UTF-16"?><ROOT>Hello</ROOT>'
        clean, _ = sanitize_xml(raw, source_path="test.xml")
        assert clean.startswith(b'<?xml version="1.0" encoding="utf-8"?>')

    def test_utf16_and_utf8_bom_give_same_bytes(self):
        body = '<?xml version="1.0" encoding="utf-16"?><ENVELOPE><N>Café</N></ENVELOPE>'
        utf16 = b"\xff\xfe" + body.encode("utf-16-le")
        utf8 = b"\xef\xbb\xbf" + body.encode("utf-8")
        clean16, _ = sanitize_xml(utf16)
        clean8, _ = sanitize_xml(utf8)
        assert clean16 == clean8

    def test_raw_backup_written(self, tmp_path):
        raw = b"<ENVELOPE/>"
        sanitize_xml(raw, source_path="DayBook.xml", backup_dir=tmp_path)
        backups = list(tmp_path.glob("DayBook_*.xml.bak"))
        assert len(backups) == 1
        assert backups[0].read_bytes() == raw


class TestSaveRawBackup:
    def test_creates_directory(self, tmp_path):
        target = tmp_path / "nested" / "backups"
        path = save_raw_backup(b"data", "Masters.json", target)
        assert path.parent == target
        assert path.name.startswith("Masters_")
        assert path.name.endswith(".json.bak")
