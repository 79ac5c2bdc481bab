import json

import pytest

from support_agent.errors import ExtractionError, UnsupportedFileTypeError
from support_agent.ingest.parser import ExtractorRegistry, normalize_type


def test_normalize_type_accepts_mime_extension_and_file_name() -> None:
    assert normalize_type("application/pdf") == "pdf"
    assert normalize_type("CSV") == "csv"
    assert normalize_type("handbook.docx") == "docx"


def test_unsupported_type_is_rejected() -> None:
    registry = ExtractorRegistry()

    assert not registry.supports("exe")
    with pytest.raises(UnsupportedFileTypeError):
        registry.resolve("application/x-msdownload")


def test_csv_rows_are_rendered_as_lines() -> None:
    data = b"sku,price\nA-1,10\n\nB-2,12\n"

    doc = ExtractorRegistry().extract(data, "text/csv", document_id="d1", metadata={"file_name": "p.csv"})

    assert doc.text.splitlines() == [
        "Table with columns: sku, price",
        "",
        "Row 1: A-1, 10",
        "Row 2: B-2, 12",
    ]
    assert doc.metadata == {"file_name": "p.csv", "format": "tabular"}


def test_json_is_flattened_to_paths() -> None:
    data = json.dumps({"store": {"hours": "9-5", "days": ["mon", "tue"]}}).encode()

    doc = ExtractorRegistry().extract(data, "json", document_id="d1")

    assert "store.hours: 9-5" in doc.text
    assert doc.metadata["format"] == "hierarchical"


def test_invalid_json_raises_extraction_error() -> None:
    with pytest.raises(ExtractionError):
        ExtractorRegistry().extract(b"{not json", "json", document_id="d1")


def test_markdown_formatting_is_stripped() -> None:
    data = b"# Returns\n\nItems can be **returned** within [30 days](https://x.test)."

    doc = ExtractorRegistry().extract(data, "md", document_id="d1")

    assert doc.text == "Returns\n\nItems can be returned within 30 days."
