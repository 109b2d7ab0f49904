"""Receipt metadata and best-effort OCR field extraction."""

from __future__ import annotations

import logging
import re
from datetime import date as dt_date
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, field_validator

from .exceptions import DependencyError

logger = logging.getLogger(__name__)

ALLOWED_RECEIPT_TYPES = {".jpeg", ".png", ".gif", ".pdf"}
MAX_RECEIPT_SIZE_BYTES = 5 * 1024 * 1024


class ReceiptRef(BaseModel):
    """Reference to an uploaded receipt file held by external storage."""

    file_reference: str = Field(..., description="Storage reference for the file")
    content_type: str = Field(..., description="MIME type reported at upload")
    size_bytes: int = Field(..., ge=0, description="Size of the upload in bytes")
    original_name: str | None = Field(
        default=None, description="File name as supplied by the submitter"
    )

    @field_validator("file_reference")
    @classmethod
    def _validate_file_reference(cls, value: str) -> str:
        ext = Path(value).suffix.lower()
        normalized_ext = ".jpeg" if ext == ".jpg" else ext
        if normalized_ext not in ALLOWED_RECEIPT_TYPES:
            allowed = ", ".join(sorted(ALLOWED_RECEIPT_TYPES))
            raise ValueError(
                f"Unsupported receipt type '{ext}'. Allowed types: {allowed}"
            )
        return value

    @field_validator("size_bytes")
    @classmethod
    def _validate_size(cls, value: int) -> int:
        if value > MAX_RECEIPT_SIZE_BYTES:
            raise ValueError("Receipt file exceeds 5MB limit")
        return value

    @property
    def is_image(self) -> bool:
        """True when the receipt is an image that OCR can read."""

        return self.content_type.lower().startswith("image/")


class ReceiptExtraction(BaseModel):
    """Fields recovered from a receipt by OCR."""

    text: str = Field(default="", description="Raw OCR text output")
    amount: Decimal | None = Field(
        default=None, description="Largest amount found on the receipt"
    )
    date: dt_date | None = Field(
        default=None, description="Most recent date found on the receipt"
    )
    merchant: str | None = Field(default=None, description="Detected merchant name")
    confidence: float = Field(
        default=0.0, ge=0, le=100, description="OCR engine confidence (0-100)"
    )


class ReceiptExtractor(Protocol):
    """Best-effort OCR collaborator."""

    def extract(self, receipt: ReceiptRef) -> ReceiptExtraction: ...


class TextReceiptExtractor:
    """Parse structured expense fields out of raw OCR text."""

    AMOUNT_PATTERN = re.compile(
        r"(?:\$|€|£|₹|¥|USD|EUR|GBP|INR|JPY)?\s*(\d+(?:\.\d+)?)"
    )
    DATE_PATTERN = re.compile(
        r"(\d{4}[/.-]\d{1,2}[/.-]\d{1,2}|\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4})"
    )
    MERCHANT_PATTERNS = (
        re.compile(r"^[A-Z\s&]+$"),
        re.compile(r"restaurant", re.IGNORECASE),
        re.compile(r"hotel", re.IGNORECASE),
        re.compile(r"store", re.IGNORECASE),
        re.compile(r"shop", re.IGNORECASE),
        re.compile(r"cafe", re.IGNORECASE),
        re.compile(r"bar", re.IGNORECASE),
    )
    DATE_FORMATS = (
        "%Y-%m-%d",
        "%Y/%m/%d",
        "%Y.%m.%d",
        "%m/%d/%Y",
        "%m/%d/%y",
        "%m-%d-%Y",
        "%m-%d-%y",
        "%d.%m.%Y",
        "%d.%m.%y",
    )

    def parse(self, text: str, confidence: float = 0.0) -> ReceiptExtraction:
        return ReceiptExtraction(
            text=text,
            amount=self._parse_amount(text),
            date=self._parse_date(text),
            merchant=self._parse_merchant(text),
            confidence=confidence,
        )

    def _parse_amount(self, text: str) -> Decimal | None:
        amounts: list[Decimal] = []
        # Date components would otherwise be read as amounts.
        without_dates = self.DATE_PATTERN.sub(" ", text)
        for match in self.AMOUNT_PATTERN.finditer(without_dates):
            try:
                value = Decimal(match.group(1))
            except InvalidOperation:
                continue
            if value > 0:
                amounts.append(value)
        return max(amounts) if amounts else None

    def _parse_date(self, text: str) -> dt_date | None:
        dates: list[dt_date] = []
        for match in self.DATE_PATTERN.finditer(text):
            parsed = self._parse_single_date(match.group(1))
            if parsed is not None:
                dates.append(parsed)
        return max(dates) if dates else None

    def _parse_single_date(self, raw: str) -> dt_date | None:
        for fmt in self.DATE_FORMATS:
            try:
                return datetime.strptime(raw, fmt).date()
            except ValueError:
                continue
        return None

    def _parse_merchant(self, text: str) -> str | None:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines:
            return None
        for line in lines[:5]:
            if any(pattern.search(line) for pattern in self.MERCHANT_PATTERNS):
                return line
        return lines[0]


class TesseractReceiptExtractor:
    """Run Tesseract OCR on image receipts held on the local filesystem."""

    def __init__(
        self,
        base_path: str | Path | None = None,
        parser: TextReceiptExtractor | None = None,
    ) -> None:
        self.base_path = Path(base_path) if base_path is not None else None
        self.parser = parser or TextReceiptExtractor()

    def extract(self, receipt: ReceiptRef) -> ReceiptExtraction:
        try:
            import pytesseract  # type: ignore[import-not-found]
            from PIL import Image  # type: ignore[import-not-found]
        except ImportError as exc:
            raise DependencyError(
                "pytesseract and Pillow are required for receipt OCR; install the 'ocr' extra."
            ) from exc

        path = Path(receipt.file_reference)
        if self.base_path is not None:
            path = self.base_path / path
        try:
            with Image.open(path) as image:
                data = pytesseract.image_to_data(
                    image, output_type=pytesseract.Output.DICT
                )
        except (OSError, pytesseract.TesseractError) as exc:
            raise DependencyError(f"OCR failed for receipt {receipt.file_reference}") from exc

        text, word_count = _text_from_ocr_data(data)
        scores = [float(conf) for conf in data.get("conf", []) if float(conf) >= 0]
        confidence = sum(scores) / len(scores) if scores else 0.0
        logger.debug(
            "OCR extracted %d words from %s (confidence %.1f)",
            word_count,
            receipt.file_reference,
            confidence,
        )
        return self.parser.parse(text, confidence=confidence)


def _text_from_ocr_data(data: dict[str, list]) -> tuple[str, int]:
    """Rebuild line-broken text from Tesseract word boxes."""

    lines: dict[tuple[int, int, int], list[str]] = {}
    words = data.get("text", [])
    for index, word in enumerate(words):
        if not str(word).strip():
            continue
        key = (
            data["block_num"][index],
            data["par_num"][index],
            data["line_num"][index],
        )
        lines.setdefault(key, []).append(str(word).strip())
    text = "\n".join(" ".join(line) for line in lines.values())
    return text, sum(len(line) for line in lines.values())
