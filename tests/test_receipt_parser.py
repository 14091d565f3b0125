import pytest

from stocklens_store.services.receipt_parser import parse_amount_from_ocr_text, validate_amount


class TestParseAmount:

    @pytest.mark.parametrize("text, expected", [
        ("ITEMS 40.00\nTOTAL £45.67", 45.67),
        ("TOTAL 1250", 12.5),
        ("Veggies 10.00\nBread 2.50\n\n 12.50", 12.5),
        ("Coffee 3.20\nGRAND TOTAL $ 8,40\nVISA ****1234", 8.4),
        ("Milk 1.10\nTOTAL\n23.99\nThank you", 23.99),
        ("SUBTOTAL 1O.5O", 10.5),
    ])
    def test_extracts_total(self, text, expected):
        assert parse_amount_from_ocr_text(text) == pytest.approx(expected)

    def test_keyword_line_beats_bigger_numbers(self):
        text = "Shop 123\nTel: 0123456789\nTOTAL 9.99\nCASH 20.00\nCHANGE 10.01"
        assert parse_amount_from_ocr_text(text) == pytest.approx(9.99)

    def test_bottom_lines_skip_payment_footer(self):
        text = "Apples 2.00\nPears 3.00\n5.00\nCard 5.00\nThank you"
        assert parse_amount_from_ocr_text(text) == pytest.approx(5.0)

    @pytest.mark.parametrize("text", ["", None, "no digits here", "\n\n"])
    def test_nothing_to_find(self, text):
        assert parse_amount_from_ocr_text(text) is None


class TestValidateAmount:

    @pytest.mark.parametrize("amount", [0.01, 12.5, "45.67", 99999.99])
    def test_accepts(self, amount):
        assert validate_amount(amount)

    @pytest.mark.parametrize("amount", [0, -3, 100000, float("nan"), float("inf"), None, "abc"])
    def test_rejects(self, amount):
        assert not validate_amount(amount)

    def test_custom_maximum(self):
        assert not validate_amount(600, maximum=500)
