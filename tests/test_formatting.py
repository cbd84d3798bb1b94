from loan_planner.formatting import format_currency, format_percent_of_income, format_rate, parse_currency


class TestFormatCurrency:
    def test_grouping(self):
        assert format_currency(2_000_000_000) == "2.000.000.000"
        assert format_currency(999) == "999"
        assert format_currency(0) == "0"

    def test_rounds_to_whole_units(self):
        assert format_currency(1_234_567.4) == "1.234.567"
        assert format_currency(999.5) == "1.000"

    def test_negative(self):
        assert format_currency(-1_234.4) == "-1.234"


class TestParseCurrency:
    def test_grouped_strings(self):
        assert parse_currency("2.000.000.000") == 2_000_000_000
        assert parse_currency("1,500") == 1_500

    def test_trailing_suffix(self):
        assert parse_currency("60.000.000 VND") == 60_000_000

    def test_garbage(self):
        assert parse_currency("abc") == 0
        assert parse_currency("") == 0

    def test_numbers_pass_through(self):
        assert parse_currency(42) == 42
        assert parse_currency(42.9) == 42.9
        assert parse_currency(-1_500.25) == -1_500.25

    def test_inverse_of_format(self):
        assert parse_currency(format_currency(123_456_789)) == 123_456_789


class TestRates:
    def test_format_rate(self):
        assert format_rate(5.2) == "5.20%"

    def test_format_percent_of_income(self):
        assert format_percent_of_income(71.04) == "71.0%"
