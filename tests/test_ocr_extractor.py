import numpy as np

import ocr_extractor
from ocr_extractor import CardTextExtractor, parse_card_text


def test_parse_thai_card():
    text = "6334\nธรรศ บุนนาค\nห้อง 3/3\nเลขที่ 5"
    assert parse_card_text(text) == {
        'student_id': 6334,
        'name': 'ธรรศ',
        'surname': 'บุนนาค',
        'classroom': '3/3',
        'number': 5,
    }


def test_parse_labelled_card():
    text = "ID: 6334\nName: John Smith\nClassroom: 3/3\nNo: 5\n"
    fields = parse_card_text(text)
    assert fields['student_id'] == 6334
    assert fields['name'] == 'John'
    assert fields['surname'] == 'Smith'
    assert fields['classroom'] == '3/3'
    assert fields['number'] == 5


def test_parse_leaves_out_missing_fields():
    assert parse_card_text("") == {}
    assert parse_card_text("   \n\n") == {}
    assert parse_card_text("no digits here") == {'name': 'no', 'surname': 'digits here'}


def test_extractor_without_engine_returns_empty_text(monkeypatch):
    monkeypatch.setattr(ocr_extractor, 'TESSERACT_AVAILABLE', False)
    extractor = CardTextExtractor(ocr_engine='tesseract')
    assert not extractor.available
    assert extractor.extract_text(np.zeros((10, 10, 4), dtype=np.uint8)) == ""
    assert extractor.extract_fields(np.zeros((10, 10, 4), dtype=np.uint8)) == {}


def test_extractor_uses_configured_engine(monkeypatch):
    monkeypatch.setattr(ocr_extractor, 'TESSERACT_AVAILABLE', True)
    monkeypatch.setattr(CardTextExtractor, '_extract_with_tesseract', lambda self, image: "6334\nเลขที่ 7")
    fields = CardTextExtractor(ocr_engine='tesseract').extract_fields(np.zeros((10, 10, 4), dtype=np.uint8))
    assert fields == {'student_id': 6334, 'number': 7}


def test_parse_id_and_number_on_the_same_line():
    assert parse_card_text("ID: 6334 No: 5") == {'student_id': 6334, 'number': 5}
    assert parse_card_text("6334 3/3 เลขที่ 12") == {'student_id': 6334, 'classroom': '3/3', 'number': 12}
