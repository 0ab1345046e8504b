# tests/test_normalizers.py
from datetime import date, datetime

import pytest

from sind_utils.normalizers import (
    current_reference,
    format_brl,
    format_cpf,
    format_date_br,
    format_long_date_pt,
    format_reference,
    make_reference,
    month_name_pt,
    parse_date,
    parse_reference,
)


def test_date_parsing():
    assert parse_date("2023-01-05") == date(2023, 1, 5)
    assert parse_date("2023-01-05T10:00:00.000Z") == date(2023, 1, 5)
    assert parse_date("05/01/2023") == date(2023, 1, 5)
    assert parse_date(datetime(2023, 1, 5, 8, 0)) == date(2023, 1, 5)
    assert parse_date("31/02/2023") is None
    assert parse_date("ontem") is None
    assert parse_date(None) is None


def test_brazilian_dates():
    assert format_date_br("2023-01-05") == "05/01/2023"
    assert format_date_br("") == ""
    assert format_long_date_pt(date(2024, 1, 5)) == "05 de janeiro de 2024"
    assert month_name_pt(3, capitalize=True) == "Março"


def test_references():
    assert make_reference(2023, 6) == "2023-06"
    assert make_reference("2024", "1") == "2024-01"
    with pytest.raises(ValueError):
        make_reference(2023, 13)
    with pytest.raises(TypeError):
        make_reference(2023, None)

    assert parse_reference("2023-06") == (2023, 6)
    assert parse_reference("2023-6") is None
    assert parse_reference("2023-13") is None
    assert format_reference("2023-06") == "06/2023"
    assert current_reference(date(2024, 2, 29)) == "2024-02"


def test_money_and_cpf():
    assert format_brl(1234.5) == "R$ 1.234,50"
    assert format_brl(None) == "R$ 0,00"
    assert format_brl(-10) == "-R$ 10,00"
    assert format_cpf("11111111111") == "111.111.111-11"
    assert format_cpf("123") == "123"
