"""
Unit tests for order-sheet parsing and price normalisation.
"""
import pytest

from procurement.errors import ValidationError
from procurement.intake import ORDER_TEMPLATE, order_template, parse_order_csv, parse_price


@pytest.mark.unit
class TestParsePrice:
    """Tests for parse_price()."""

    def test_dot_and_comma_decimal(self):
        assert parse_price("25.50") == 25.5
        assert parse_price("25,50") == 25.5

    def test_thousands_separators(self):
        assert parse_price("1.234,56") == 1234.56
        assert parse_price("1,234.56") == 1234.56
        assert parse_price("1.234.567") == 1234567.0

    def test_currency_symbols_and_spaces(self):
        assert parse_price("€ 12,00") == 12.0
        assert parse_price(" 7.5 ") == 7.5

    def test_numbers_pass_through(self):
        assert parse_price(3) == 3.0
        assert parse_price(4.25) == 4.25

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            parse_price("abc")
        with pytest.raises(ValueError):
            parse_price(None)


@pytest.mark.unit
class TestParseOrderCsv:
    """Tests for parse_order_csv()."""

    def test_template_parses(self):
        """The template we hand out must itself be a valid order sheet."""
        products = parse_order_csv(order_template())
        assert [p.sku for p in products] == ["ABC123", "DEF456"]
        assert products[0].quantity == 10
        assert products[1].price == 15.75

    def test_template_text(self):
        assert ORDER_TEMPLATE.splitlines()[0] == "SKU;Quantità;Prezzo Unitario"

    def test_file_with_blank_lines_and_comma_prices(self, sample_order_csv):
        products = parse_order_csv(sample_order_csv)
        assert len(products) == 2
        assert products[1].sku == "DEF456"
        assert products[1].price == 15.75
        assert products[0].name == "Blue mug"

    def test_english_headers_and_bom(self):
        text = "\ufeffsku;Quantity;Unit Price;Brand\nX1;2;3.00;Acme\n"
        products = parse_order_csv(text)
        assert products[0].sku == "X1"
        assert products[0].brand == "Acme"

    def test_missing_required_header(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_order_csv("SKU;Quantità\nA;1\n")
        assert "price" in exc_info.value.message

    def test_bad_rows_reported_together(self):
        text = "SKU;Quantità;Prezzo Unitario\nA;x;1\nB;2;nope\n;1;1\nC;1;2\n"
        with pytest.raises(ValidationError) as exc_info:
            parse_order_csv(text)
        problems = exc_info.value.problems
        assert len(problems) == 3
        assert problems[0].startswith("line 2")
        assert problems[1].startswith("line 3")
        assert "missing SKU" in problems[2]

    def test_empty_sheet(self):
        with pytest.raises(ValidationError):
            parse_order_csv("")

    def test_custom_delimiter(self):
        products = parse_order_csv("SKU,Quantity,Price\nA,1,2.5\n", delimiter=",")
        assert products[0].price == 2.5
