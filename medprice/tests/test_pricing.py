from medprice.pricing import format_price, parse_price


def test_parse_euro_price():
    assert parse_price("€12.50") == 12.5


def test_parse_non_numeric_is_zero():
    assert parse_price("Free") == 0
    assert parse_price("") == 0
    assert parse_price(None) == 0
    assert parse_price(".") == 0


def test_comma_is_stripped_as_non_digit():
    assert parse_price("€1,234.56") == 1234.56
    # a decimal comma is not understood
    assert parse_price("12,50 €") == 1250.0


def test_only_leading_number_counts():
    assert parse_price("1.2.3") == 1.2
    assert parse_price("£3.") == 3.0
    assert parse_price("approx .99") == 0.99


def test_range_collapses_into_one_number():
    assert abs(parse_price("€12.50 - €15") - 12.5015) < 1e-9


def test_format_price_two_decimals():
    assert format_price(12.5) == "€12.50"
    assert format_price(0) == "€0.00"
    assert format_price(3.14159, symbol="£") == "£3.14"
