"""Tests for receipt metadata and OCR text parsing."""

import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from types import ModuleType, SimpleNamespace

import pytest

from expense_approval.exceptions import DependencyError
from expense_approval.receipts import (
    MAX_RECEIPT_SIZE_BYTES,
    ReceiptRef,
    TesseractReceiptExtractor,
    TextReceiptExtractor,
)


def _build_receipt(**overrides: object) -> ReceiptRef:
    base_kwargs = {
        "file_reference": "receipts/lunch.png",
        "content_type": "image/png",
        "size_bytes": 1024,
    }
    base_kwargs.update(overrides)
    return ReceiptRef.model_validate(base_kwargs)


class TestReceiptValidation:
    def test_allowed_file_types(self) -> None:
        """Receipt accepts image and PDF extensions, case-insensitively."""

        _build_receipt(file_reference="scan.JPEG")
        _build_receipt(file_reference="photo.jpg")
        _build_receipt(file_reference="scan.gif")
        _build_receipt(file_reference="invoice.pdf", content_type="application/pdf")

        with pytest.raises(ValueError):
            _build_receipt(file_reference="document.txt")
        with pytest.raises(ValueError):
            _build_receipt(file_reference="image.HEIC")

    def test_file_size_limit_enforced(self) -> None:
        """Reject receipts over the 5MB size limit."""

        _build_receipt(size_bytes=MAX_RECEIPT_SIZE_BYTES)
        with pytest.raises(ValueError):
            _build_receipt(size_bytes=MAX_RECEIPT_SIZE_BYTES + 1)

    def test_only_images_are_ocr_candidates(self) -> None:
        assert _build_receipt(content_type="IMAGE/PNG").is_image
        assert not _build_receipt(
            file_reference="invoice.pdf", content_type="application/pdf"
        ).is_image


class TestTextExtraction:
    def test_extract_from_text(self) -> None:
        """OCR text yields the total, the date and the merchant line."""

        text = "\n".join(
            [
                "CAFE CENTRAL",
                "Latte 3.50",
                "Croissant 2.75",
                "Total $6.25",
                "02/14/2025",
            ]
        )

        result = TextReceiptExtractor().parse(text, confidence=91.5)

        assert result.amount == Decimal("6.25")
        assert result.date == date(2025, 2, 14)
        assert result.merchant == "CAFE CENTRAL"
        assert result.confidence == 91.5
        assert result.text == text

    def test_dates_are_not_read_as_amounts(self) -> None:
        result = TextReceiptExtractor().parse("Corner Store\n2025-01-05\nTotal 4.20")

        assert result.amount == Decimal("4.20")

    def test_latest_date_wins(self) -> None:
        text = "Grand Hotel\nArrival 2025-01-03\nDeparture 2025-01-10\nTotal 612.00"

        result = TextReceiptExtractor().parse(text)

        assert result.date == date(2025, 1, 10)
        assert result.merchant == "Grand Hotel"

    def test_merchant_falls_back_to_first_line(self) -> None:
        result = TextReceiptExtractor().parse("Receipt #42\nThank you\n")

        assert result.merchant == "Receipt #42"

    def test_empty_text_extracts_nothing(self) -> None:
        result = TextReceiptExtractor().parse("   \n")

        assert result.amount is None
        assert result.date is None
        assert result.merchant is None


class TestTesseractExtractor:
    def test_missing_ocr_libraries_raise_dependency_error(self, monkeypatch) -> None:
        monkeypatch.setitem(sys.modules, "pytesseract", None)

        with pytest.raises(DependencyError, match="ocr"):
            TesseractReceiptExtractor().extract(_build_receipt())

    def test_single_ocr_pass_and_image_is_closed(self, monkeypatch) -> None:
        opened: list[_FakeImage] = []

        def open_image(path):
            opened.append(_FakeImage(path))
            return opened[-1]

        ocr_calls: list[_FakeImage] = []

        def image_to_data(image, output_type):
            ocr_calls.append(image)
            return {
                "text": ["", "CAFE", "CENTRAL", "", "Total", "$6.25"],
                "block_num": [1, 1, 1, 1, 1, 1],
                "par_num": [1, 1, 1, 1, 1, 1],
                "line_num": [0, 1, 1, 0, 2, 2],
                "conf": ["-1", "90", "92", "-1", "88", "86"],
            }

        monkeypatch.setitem(sys.modules, "PIL", _module("PIL", Image=SimpleNamespace(open=open_image)))
        monkeypatch.setitem(
            sys.modules,
            "pytesseract",
            _module(
                "pytesseract",
                Output=SimpleNamespace(DICT="dict"),
                TesseractError=type("TesseractError", (Exception,), {}),
                image_to_data=image_to_data,
            ),
        )

        result = TesseractReceiptExtractor(base_path="/receipts").extract(_build_receipt())

        assert len(ocr_calls) == 1
        assert opened[0].path == Path("/receipts/receipts/lunch.png")
        assert opened[0].closed
        assert result.text == "CAFE CENTRAL\nTotal $6.25"
        assert result.merchant == "CAFE CENTRAL"
        assert result.amount == Decimal("6.25")
        assert result.confidence == 89.0

    def test_unreadable_image_raises_dependency_error(self, monkeypatch) -> None:
        def open_image(path):
            raise FileNotFoundError(path)

        monkeypatch.setitem(sys.modules, "PIL", _module("PIL", Image=SimpleNamespace(open=open_image)))
        monkeypatch.setitem(
            sys.modules,
            "pytesseract",
            _module("pytesseract", TesseractError=type("TesseractError", (Exception,), {})),
        )

        with pytest.raises(DependencyError, match="OCR failed"):
            TesseractReceiptExtractor().extract(_build_receipt())


class _FakeImage:
    def __init__(self, path) -> None:
        self.path = path
        self.closed = False

    def __enter__(self) -> "_FakeImage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.closed = True


def _module(name: str, **attributes: object) -> ModuleType:
    module = ModuleType(name)
    for key, value in attributes.items():
        setattr(module, key, value)
    return module
