import zipfile

import run_from_html


def test_exports_html_file(tmp_path):
    source = tmp_path / "chat.html"
    source.write_text("<h1>Notes</h1><p>no math here</p>", encoding="utf-8")
    target = tmp_path / "chat.docx"

    assert run_from_html.main([str(source), "-o", str(target), "--log-level", "WARNING"]) == 0
    with zipfile.ZipFile(target) as zf:
        assert "no math here" in zf.read("word/document.xml").decode("utf-8")


def test_missing_input_fails(tmp_path):
    target = tmp_path / "out.docx"
    assert run_from_html.main([str(tmp_path / "absent.html"), "-o", str(target)]) == 1
    assert not target.exists()
