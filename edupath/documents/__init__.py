"""
EduPath Consult — Uploaded Document Text Extraction
PDF → pdfplumber, images → Tesseract OCR, .txt → UTF-8 decode.
"""
import io
import os

import pdfplumber
import pytesseract
from PIL import Image, UnidentifiedImageError

from edupath.config import ALLOWED_EXTENSIONS, MAX_UPLOAD_BYTES, MEDIA_TYPES


class DocumentError(ValueError):
    """Upload rejected or no text could be read from it."""


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def validate_upload(filename: str, size: int) -> str:
    """Check type and size. Returns the lowercased extension."""
    ext = file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise DocumentError(f"Unsupported file type '{ext or filename}'. "
                            f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}")
    if size <= 0:
        raise DocumentError("Uploaded file is empty")
    if size > MAX_UPLOAD_BYTES:
        raise DocumentError(f"File too large ({size // 1024} KB). Maximum is {MAX_UPLOAD_BYTES // (1024 * 1024)} MB")
    return ext


def media_type(filename: str) -> str:
    return MEDIA_TYPES.get(file_extension(filename), "application/octet-stream")


def _pdf_text(content: bytes) -> str:
    text = ""
    try:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            for page in pdf.pages:
                page_text = page.extract_text()
                if page_text:
                    text += page_text + "\n\n"
    except Exception as e:
        print(f"[DOCS] pdfplumber failed: {type(e).__name__}: {e}")
        raise DocumentError("Could not read the PDF file")
    return text


def _image_text(content: bytes) -> str:
    try:
        image = Image.open(io.BytesIO(content))
        return pytesseract.image_to_string(image.convert("L"), lang="eng")
    except UnidentifiedImageError:
        raise DocumentError("Could not read the image file")
    except pytesseract.TesseractNotFoundError:
        print("[DOCS] Tesseract binary not installed, OCR unavailable")
        raise DocumentError("Image text recognition is not available on this server")


def extract_text(content: bytes, filename: str) -> str:
    """Return the document's text. Raises DocumentError when nothing is readable."""
    ext = validate_upload(filename, len(content))
    if ext == ".pdf":
        text = _pdf_text(content)
    elif ext == ".txt":
        text = content.decode("utf-8", errors="replace")
    else:
        text = _image_text(content)
    text = text.strip()
    if not text:
        raise DocumentError("No readable text found in the document. Scanned PDFs should be uploaded as images.")
    print(f"[DOCS] Extracted {len(text)} chars from '{filename}'")
    return text
