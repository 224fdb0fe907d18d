#!/usr/bin/env python3
"""
Extract plain text from uploaded documents.

Supported formats: plain text, Markdown, PDF, DOCX, XLSX, CSV/TSV, HTML,
JSON and XML. The format is taken from the file extension, then the
content type, then the leading bytes of the file.

Usage:
    python -m api.extract_text PATH [--output OUT.json] [--max-chars N]
"""

import argparse
import csv
import io
import json
import logging
import sys
import zipfile
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import docx  # python-docx
import fitz  # PyMuPDF
import openpyxl
from bs4 import BeautifulSoup

from api.utils.documents import fingerprint, read_document, write_result


logger = logging.getLogger(__name__)


class ExtractionError(ValueError):
    """Text could not be extracted from a document."""


class UnsupportedFormatError(ExtractionError):
    """The document format is not one we can read."""


SUPPORTED_FORMATS = ("txt", "markdown", "pdf", "docx", "xlsx", "csv", "html", "json", "xml")

EXTENSION_FORMATS = {
    ".txt": "txt",
    ".text": "txt",
    ".log": "txt",
    ".md": "markdown",
    ".markdown": "markdown",
    ".pdf": "pdf",
    ".docx": "docx",
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
    ".csv": "csv",
    ".tsv": "csv",
    ".html": "html",
    ".htm": "html",
    ".json": "json",
    ".xml": "xml",
}

CONTENT_TYPE_FORMATS = {
    "text/plain": "txt",
    "text/markdown": "markdown",
    "text/x-markdown": "markdown",
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "text/csv": "csv",
    "text/tab-separated-values": "csv",
    "text/html": "html",
    "application/xhtml+xml": "html",
    "application/json": "json",
    "application/xml": "xml",
    "text/xml": "xml",
}

TRUNCATION_MARKER = "\n\n[... truncated {count} characters]"


# ===== Decoding =====

def decode_text(content: bytes) -> Tuple[str, str]:
    """
    Decode bytes to text, detecting the encoding.

    Tries UTF-16 (BOM only), UTF-8 (with or without BOM), cp1252 and
    finally latin-1, which accepts any byte sequence.

    Returns:
        (text, encoding name)
    """
    if content.startswith((b"\xff\xfe", b"\xfe\xff")):
        try:
            return content.decode("utf-16"), "utf-16"
        except UnicodeDecodeError:
            pass

    try:
        text = content.decode("utf-8-sig")
        return text, "utf-8-sig" if content.startswith(b"\xef\xbb\xbf") else "utf-8"
    except UnicodeDecodeError:
        pass

    try:
        return content.decode("cp1252"), "cp1252"
    except UnicodeDecodeError:
        return content.decode("latin-1"), "latin-1"


def _looks_binary(content: bytes) -> bool:
    sample = content[:4096]
    if sample.startswith((b"\xff\xfe", b"\xfe\xff")):
        return False
    return b"\x00" in sample


def _clean_lines(text: str) -> str:
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


# ===== Format detection =====

def _zip_format(content: bytes) -> Optional[str]:
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            names = set(archive.namelist())
    except zipfile.BadZipFile:
        return None

    if "word/document.xml" in names:
        return "docx"
    if "xl/workbook.xml" in names:
        return "xlsx"
    return None


def _sniff_format(content: bytes) -> Optional[str]:
    head = content[:1024].lstrip()

    if head.startswith(b"%PDF-"):
        return "pdf"
    if head.startswith(b"PK\x03\x04"):
        return _zip_format(content)
    if _looks_binary(content):
        return None

    text, _ = decode_text(content[:4096])
    stripped = text.lstrip()
    lowered = stripped[:256].lower()
    if lowered.startswith("<?xml"):
        return "html" if "<html" in lowered else "xml"
    if lowered.startswith(("<!doctype html", "<html")):
        return "html"
    if stripped.startswith("<"):
        return "xml"
    if stripped.startswith(("{", "[")):
        try:
            json.loads(decode_text(content)[0])
            return "json"
        except ValueError:
            pass
    return "txt"


def detect_format(
    filename: Optional[str], content: bytes, content_type: Optional[str] = None
) -> str:
    """
    Work out the document format.

    Args:
        filename: Original filename (may be None)
        content: Raw file bytes
        content_type: MIME type reported by the client

    Returns:
        One of SUPPORTED_FORMATS

    Raises:
        UnsupportedFormatError: If the format is unknown or unsupported
    """
    suffix = Path(filename or "").suffix.lower()

    if suffix == ".doc":
        raise UnsupportedFormatError(
            "Legacy Word (.doc) files are not supported. Please convert to DOCX or PDF."
        )
    if suffix in EXTENSION_FORMATS:
        return EXTENSION_FORMATS[suffix]

    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in CONTENT_TYPE_FORMATS:
        return CONTENT_TYPE_FORMATS[mime]

    sniffed = _sniff_format(content)
    if sniffed:
        return sniffed

    raise UnsupportedFormatError(f"Unsupported file format: {suffix or mime or 'unknown'}")


# ===== Per-format extraction =====

def extract_text_from_txt(content: bytes) -> Dict[str, Any]:
    """
    Extract text from a plain text (or Markdown) file.

    Args:
        content: Raw file bytes

    Returns:
        dict with text and metadata
    """
    text, encoding = decode_text(content)
    return {
        "text": text,
        "encoding": encoding,
        "extraction_method": "plain_text",
    }


def extract_text_from_pdf(content: bytes) -> Dict[str, Any]:
    """
    Extract text from PDF using PyMuPDF.

    Args:
        content: Raw PDF bytes

    Returns:
        dict with text and metadata

    Raises:
        ExtractionError: If PDF extraction fails
    """
    try:
        doc = fitz.open(stream=content, filetype="pdf")

        # Extract text from all pages
        text_parts = []
        for page in doc:
            page_text = page.get_text()
            if page_text.strip():
                text_parts.append(page_text.strip())

        page_count = len(doc)
        doc.close()

        return {
            "text": "\n\n".join(text_parts),
            "page_count": page_count,
            "extraction_method": "pymupdf",
        }

    except Exception as e:
        raise ExtractionError(f"PDF extraction failed: {e}") from e


def extract_text_from_docx(content: bytes) -> Dict[str, Any]:
    """
    Extract text from DOCX using python-docx.

    Paragraphs come first, then each table row as tab-separated cells.

    Args:
        content: Raw DOCX bytes

    Returns:
        dict with text and metadata

    Raises:
        ExtractionError: If DOCX extraction fails
    """
    try:
        document = docx.Document(io.BytesIO(content))

        text_parts = [para.text for para in document.paragraphs if para.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    text_parts.append("\t".join(cells))

        return {
            "text": "\n".join(text_parts),
            "paragraph_count": len(document.paragraphs),
            "table_count": len(document.tables),
            "extraction_method": "python-docx",
        }

    except Exception as e:
        raise ExtractionError(f"DOCX extraction failed: {e}") from e


def extract_text_from_xlsx(content: bytes) -> Dict[str, Any]:
    """
    Extract cell values from an XLSX workbook using openpyxl.

    Each sheet becomes a "# Sheet: <name>" header followed by one
    tab-separated line per non-empty row.

    Args:
        content: Raw XLSX bytes

    Returns:
        dict with text and metadata

    Raises:
        ExtractionError: If XLSX extraction fails
    """
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)

        sections = []
        row_count = 0
        for sheet in workbook.worksheets:
            lines = [f"# Sheet: {sheet.title}"]
            for row in sheet.iter_rows(values_only=True):
                values = ["" if value is None else str(value) for value in row]
                if any(v.strip() for v in values):
                    lines.append("\t".join(values).rstrip("\t"))
                    row_count += 1
            sections.append("\n".join(lines))

        sheet_count = len(workbook.worksheets)
        workbook.close()

        return {
            "text": "\n\n".join(sections),
            "sheet_count": sheet_count,
            "row_count": row_count,
            "extraction_method": "openpyxl",
        }

    except Exception as e:
        raise ExtractionError(f"XLSX extraction failed: {e}") from e


def extract_text_from_csv(content: bytes, delimiter: Optional[str] = None) -> Dict[str, Any]:
    """
    Extract rows from a CSV/TSV file, re-emitted tab-separated.

    Args:
        content: Raw file bytes
        delimiter: Force a delimiter instead of sniffing one

    Returns:
        dict with text and metadata

    Raises:
        ExtractionError: If the file cannot be parsed
    """
    text, encoding = decode_text(content)

    # The csv module caps fields at 128K chars by default; one cell may hold the whole file
    if len(text) >= csv.field_size_limit():
        csv.field_size_limit(len(text) + 1)

    try:
        if delimiter:
            reader = csv.reader(io.StringIO(text), delimiter=delimiter)
        else:
            try:
                dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t|")
            except csv.Error:
                dialect = csv.excel
            reader = csv.reader(io.StringIO(text), dialect)

        lines = []
        for row in reader:
            if any(cell.strip() for cell in row):
                lines.append("\t".join(cell.strip() for cell in row))

    except csv.Error as e:
        raise ExtractionError(f"CSV extraction failed: {e}") from e

    return {
        "text": "\n".join(lines),
        "row_count": len(lines),
        "encoding": encoding,
        "extraction_method": "csv",
    }


def extract_text_from_html(content: bytes) -> Dict[str, Any]:
    """
    Extract text from HTML using BeautifulSoup.

    Args:
        content: Raw HTML bytes

    Returns:
        dict with text and metadata

    Raises:
        ExtractionError: If HTML extraction fails
    """
    html_content, encoding = decode_text(content)

    try:
        soup = BeautifulSoup(html_content, "lxml")

        # Remove script and style elements
        for script in soup(["script", "style"]):
            script.decompose()

        return {
            "text": _clean_lines(soup.get_text(separator="\n")),
            "encoding": encoding,
            "extraction_method": "beautifulsoup",
        }

    except Exception as e:
        raise ExtractionError(f"HTML extraction failed: {e}") from e


def extract_text_from_json(content: bytes) -> Dict[str, Any]:
    """Pretty-print a JSON document so nesting survives as indentation."""
    text, encoding = decode_text(content)

    try:
        data = json.loads(text)
    except ValueError as e:
        raise ExtractionError(f"JSON extraction failed: {e}") from e

    return {
        "text": json.dumps(data, indent=2, ensure_ascii=False),
        "encoding": encoding,
        "extraction_method": "json",
    }


def extract_text_from_xml(content: bytes) -> Dict[str, Any]:
    """Collect the text nodes of an XML document."""
    try:
        soup = BeautifulSoup(content, "xml")
        return {
            "text": _clean_lines(soup.get_text(separator="\n")),
            "extraction_method": "beautifulsoup-xml",
        }

    except Exception as e:
        raise ExtractionError(f"XML extraction failed: {e}") from e


EXTRACTORS = {
    "txt": extract_text_from_txt,
    "markdown": extract_text_from_txt,
    "pdf": extract_text_from_pdf,
    "docx": extract_text_from_docx,
    "xlsx": extract_text_from_xlsx,
    "csv": extract_text_from_csv,
    "html": extract_text_from_html,
    "json": extract_text_from_json,
    "xml": extract_text_from_xml,
}


# ===== Dispatcher =====

def truncate_text(text: str, max_chars: Optional[int]) -> Tuple[str, bool]:
    """
    Cut text to max_chars and append a marker saying how much was dropped.

    Returns:
        (text, truncated)
    """
    if not max_chars or max_chars <= 0 or len(text) <= max_chars:
        return text, False

    dropped = len(text) - max_chars
    return text[:max_chars] + TRUNCATION_MARKER.format(count=dropped), True


def extract_text(
    content: bytes,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
    max_chars: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Extract text from a document held in memory.

    Args:
        content: Raw file bytes
        filename: Original filename (used for format detection)
        content_type: MIME type reported by the client
        max_chars: Truncate the text beyond this many characters

    Returns:
        Extraction result with text and metadata

    Raises:
        UnsupportedFormatError: If the format is not supported
        ExtractionError: If extraction fails
    """
    doc_format = detect_format(filename, content, content_type)
    if doc_format == "csv" and Path(filename or "").suffix.lower() == ".tsv":
        extracted = extract_text_from_csv(content, delimiter="\t")
    else:
        extracted = EXTRACTORS[doc_format](content)

    if doc_format == "markdown":
        extracted["extraction_method"] = "markdown"

    full_text = extracted.pop("text")
    text, truncated = truncate_text(full_text, max_chars)

    metadata = {
        "char_count": len(text),
        "original_char_count": len(full_text),
        "source_hash": fingerprint(content),
        "byte_count": len(content),
    }
    metadata.update(extracted)

    if truncated:
        logger.info(f"Truncated {filename or 'document'} from {len(full_text)} to {max_chars} chars")

    return {
        "filename": filename or "document",
        "format": doc_format,
        "extracted_at": datetime.now(timezone.utc).isoformat(),
        "text": text,
        "truncated": truncated,
        "metadata": metadata,
    }


def extract_text_from_path(
    path: Path, max_chars: Optional[int] = None, max_bytes: int = 0
) -> Dict[str, Any]:
    """
    Extract text from a document on disk.

    Raises:
        FileNotFoundError: If the file does not exist
        ExtractionError: If the format is unsupported or extraction fails
    """
    content = read_document(path, max_bytes=max_bytes)
    return extract_text(content, filename=path.name, max_chars=max_chars)


def main(argv=None) -> int:
    """
    CLI entry point.

    Returns:
        Exit code (0=success, 1=validation error, 2=extraction error)
    """
    parser = argparse.ArgumentParser(
        description="Extract text from documents (TXT/MD/PDF/DOCX/XLSX/CSV/HTML/JSON/XML)"
    )
    parser.add_argument("path", help="Path to document")
    parser.add_argument("--output", help="Write the result JSON here instead of stdout")
    parser.add_argument(
        "--max-chars", type=int, default=0, help="Truncate text beyond N characters (default: no limit)"
    )

    args = parser.parse_args(argv)

    try:
        result = extract_text_from_path(Path(args.path), max_chars=args.max_chars)

    except (UnsupportedFormatError, FileNotFoundError) as e:
        print(f"[ERROR] Validation error: {e}", file=sys.stderr)
        return 1

    except ExtractionError as e:
        print(f"[ERROR] Extraction error: {e}", file=sys.stderr)
        return 2

    if args.output:
        write_result(Path(args.output), result)
        print(f"[OK] Extracted {result['filename']} ({result['metadata']['char_count']} chars)")
        print(f"  Output: {args.output}")
    else:
        print(json.dumps(result, indent=2, ensure_ascii=False))

    return 0


if __name__ == "__main__":
    sys.exit(main())
