"""
License Plate Reader
Reads a vehicle license plate from a camera still.
Using: OpenCV for pre-processing, EasyOCR for text recognition, regex heuristics for plate extraction
"""
import re
import logging
from typing import List, Optional

import cv2
import numpy as np
import easyocr

import config

logger = logging.getLogger(__name__)


# Standard plate, e.g. MH20EE7602: 2 letters, 2 digits, 1-3 letters, 3-4 digits
STRONG_PLATE_RE = re.compile(r'[A-Z]{2}[0-9]{2}[A-Z]{1,3}[0-9]{3,4}')
# Generic fallback, e.g. ABC-123: the whole line is 4-12 letters, digits or hyphens
GENERIC_PLATE_RE = re.compile(r'^[A-Z0-9-]{4,12}$')


def extract_plate_from_text(raw_text: str) -> str:
    """
    Pick the most plausible license plate from raw OCR text

    Precedence:
        1. first line containing a standard plate (returned immediately)
        2. first line that is entirely a generic 4-12 character plate
        3. longest cleaned line

    Args:
        raw_text: Multi-line OCR output

    Returns:
        Plate string, or '' when nothing usable was read
    """
    if not raw_text:
        return ''

    lines = [line.strip().upper() for line in raw_text.split('\n')]
    best_match = None

    for line in lines:
        clean_line = re.sub(r'[^A-Z0-9]', '', line)
        strong = STRONG_PLATE_RE.search(clean_line)
        if strong:
            logger.info(f"[OCR] Found strong pattern match: {strong.group(0)}")
            return strong.group(0)

        hyphenated = re.sub(r'[^A-Z0-9-]', '', line)
        if best_match is None and GENERIC_PLATE_RE.match(hyphenated):
            best_match = hyphenated

    if best_match:
        return best_match

    longest = ''
    for line in lines:
        clean = re.sub(r'[^A-Z0-9-]', '', line)
        if len(clean) > len(longest):
            longest = clean
    return longest


def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode encoded image bytes (JPEG, PNG, ...) into a BGR array"""
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image data")
    return image


def preprocess_image(image: np.ndarray,
                     width: int = config.OCR_RESIZE_WIDTH,
                     threshold: int = config.OCR_THRESHOLD) -> np.ndarray:
    """
    Normalize a camera still for OCR

    - Resize to a fixed width (aspect ratio kept) so small plates get enough pixels
    - Grayscale to remove colour noise
    - Binarize for a high-contrast black/white image
    """
    h, w = image.shape[:2]
    if w != width:
        height = max(1, int(round(h * width / float(w))))
        interpolation = cv2.INTER_CUBIC if width > w else cv2.INTER_AREA
        image = cv2.resize(image, (width, height), interpolation=interpolation)

    if image.ndim == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

    _, binary = cv2.threshold(image, threshold, 255, cv2.THRESH_BINARY)
    return binary


class PlateReader:
    """
    Reads license plates from encoded camera images.

    The EasyOCR reader is created on first use; pass `reader` to supply any
    object with an EasyOCR-compatible `readtext(image, detail=0, ...)` method.
    """

    def __init__(self, reader=None, languages: Optional[List[str]] = None, gpu: bool = config.OCR_GPU):
        self.languages = languages or list(config.OCR_LANGUAGES)
        self.gpu = gpu
        self._reader = reader

    @property
    def reader(self):
        if self._reader is None:
            self._reader = self._load_reader()
        return self._reader

    def _load_reader(self):
        logger.info("Loading EasyOCR for license plate recognition...")
        if self.gpu:
            try:
                reader = easyocr.Reader(self.languages, gpu=True)
                logger.info("✅ EasyOCR loaded successfully (GPU enabled)")
                return reader
            except Exception as e:
                logger.warning(f"⚠️ EasyOCR GPU init failed, using CPU: {e}")
        reader = easyocr.Reader(self.languages, gpu=False)
        logger.info("✅ EasyOCR loaded successfully (CPU mode)")
        return reader

    def recognize_text(self, image: np.ndarray) -> str:
        """Run OCR on a pre-processed image; one output line per detected text box"""
        results = self.reader.readtext(
            image,
            detail=0,
            paragraph=False,
            allowlist=config.PLATE_CHAR_ALLOWLIST,
        )
        return '\n'.join(str(text) for text in results)

    def detect_license_plate(self, image_bytes: bytes) -> Optional[str]:
        """
        Full pipeline: decode -> pre-process -> OCR -> plate extraction

        Returns:
            Plate string, or None when no plate could be read
        """
        try:
            image = decode_image(image_bytes)
            processed = preprocess_image(image)
            logger.info("[OCR] Image pre-processed successfully.")

            raw_text = self.recognize_text(processed)
            if not raw_text:
                return None
            logger.info(f"[OCR] Raw text: {raw_text!r}")

            return extract_plate_from_text(raw_text) or None
        except Exception as e:
            logger.error(f"OCR error: {e}")
            return None


# Singleton instance for global use
_reader_instance = None


def get_plate_reader() -> PlateReader:
    """Get or create singleton PlateReader instance"""
    global _reader_instance
    if _reader_instance is None:
        _reader_instance = PlateReader()
    return _reader_instance
