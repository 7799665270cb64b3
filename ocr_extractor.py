"""
Text extraction for rectified ID cards
Thin adapter over an installed OCR engine plus the parser that turns its
raw text into student fields
"""
import logging
import re
from typing import Dict, List

import numpy as np

from config import settings

# Import OCR libraries with fallback handling
try:
    import pytesseract
    TESSERACT_AVAILABLE = True
except ImportError:
    TESSERACT_AVAILABLE = False
    logging.debug("Tesseract not available")

try:
    import easyocr
    EASYOCR_AVAILABLE = True
except ImportError:
    EASYOCR_AVAILABLE = False
    logging.debug("EasyOCR not available")

logger = logging.getLogger(__name__)

ID_PATTERN = re.compile(r'(\d{4,5})')
CLASSROOM_PATTERN = re.compile(r'(\d/\d+)')
NUMBER_PATTERN = re.compile(r'(?:\bNo\.?|เลขที่)\s*[:.]?\s*(\d{1,2})\b', re.IGNORECASE)
DIGIT_PATTERN = re.compile(r'\d')

# Tesseract language codes to EasyOCR ones
EASYOCR_LANGUAGES = {'tha': ['th', 'en'], 'eng': ['en']}


def parse_card_text(text: str) -> Dict:
    """
    Pull student fields out of raw OCR text, e.g.
        ID: 6334
        ธรรศ บุนนาค
        Classroom: 3/3
        No: 5
    Fields that cannot be found are left out.
    """
    result: Dict = {}
    lines = [line.strip() for line in text.split("\n") if line.strip()]

    for line in lines:
        if 'number' not in result:
            match = NUMBER_PATTERN.search(line)
            if match:
                result['number'] = int(match.group(1))

        # The student number never doubles as the id or classroom
        rest = NUMBER_PATTERN.sub(" ", line)

        if 'student_id' not in result:
            match = ID_PATTERN.search(rest)
            if match:
                result['student_id'] = int(match.group(1))

        if 'classroom' not in result:
            match = CLASSROOM_PATTERN.search(rest)
            if match:
                result['classroom'] = match.group(1)

        if 'name' not in result and len(line) > 2 and not DIGIT_PATTERN.search(line):
            parts = line.split()
            if parts and parts[0].endswith(':'):
                parts = parts[1:]
            if len(parts) >= 2:
                result['name'] = parts[0]
                result['surname'] = " ".join(parts[1:])

    return result


class CardTextExtractor:
    """Runs whichever OCR engine is installed over a rectified card"""

    def __init__(self, ocr_engine: str = None, language: str = None):
        self.ocr_engine = ocr_engine or settings.OCR_ENGINE
        self.language = language or settings.OCR_LANGUAGE
        self._easyocr_reader = None

    @property
    def available(self) -> bool:
        if self.ocr_engine == 'easyocr':
            return EASYOCR_AVAILABLE
        return TESSERACT_AVAILABLE

    def extract_text(self, image: np.ndarray) -> str:
        """Raw text of the card; empty when no engine is installed"""
        if not self.available:
            logger.warning(f"OCR engine '{self.ocr_engine}' is not installed")
            return ""

        if self.ocr_engine == 'easyocr':
            return self._extract_with_easyocr(image)
        return self._extract_with_tesseract(image)

    def extract_fields(self, image: np.ndarray) -> Dict:
        text = self.extract_text(image)
        fields = parse_card_text(text)
        logger.info(f"Extracted fields: {sorted(fields)}")
        return fields

    def _extract_with_tesseract(self, image: np.ndarray) -> str:
        rgb = np.ascontiguousarray(image[:, :, :3]) if image.ndim == 3 else image
        return pytesseract.image_to_string(rgb, lang=self.language)

    def _extract_with_easyocr(self, image: np.ndarray) -> str:
        if self._easyocr_reader is None:
            languages: List[str] = EASYOCR_LANGUAGES.get(self.language, ['en'])
            self._easyocr_reader = easyocr.Reader(languages, gpu=False, verbose=False)
            logger.info(f"EasyOCR initialized for {languages}")

        rgb = np.ascontiguousarray(image[:, :, :3]) if image.ndim == 3 else image
        results = self._easyocr_reader.readtext(rgb, detail=0, paragraph=False)
        return "\n".join(results)
