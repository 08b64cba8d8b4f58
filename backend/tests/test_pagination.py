"""
Page metadata and query-string parsing.
"""
import pytest

from fintrack.errors import ValidationError
from fintrack.pagination import MAX_PAGE_SIZE, paginate, parse_page_param


def test_first_page() -> None:
    meta = paginate(1, 10, 35)

    assert meta.skip == 0
    assert meta.total_pages == 4
    assert meta.has_next_page is True
    assert meta.has_previous_page is False


def test_last_page() -> None:
    meta = paginate(4, 10, 35)

    assert meta.skip == 30
    assert meta.has_next_page is False
    assert meta.has_previous_page is True


def test_page_beyond_last_is_empty_but_valid() -> None:
    meta = paginate(9, 10, 35)

    assert meta.skip == 80
    assert meta.has_next_page is False
    assert meta.has_previous_page is True


def test_empty_listing_has_one_page() -> None:
    meta = paginate(1, 10, 0)

    assert meta.total_pages == 1
    assert meta.has_next_page is False
    assert meta.has_previous_page is False


def test_page_size_is_clamped() -> None:
    meta = paginate(2, 1000, 250)

    assert meta.page_size == MAX_PAGE_SIZE
    assert meta.skip == MAX_PAGE_SIZE
    assert meta.total_pages == 3


def test_numeric_strings_are_accepted() -> None:
    meta = paginate("2", "5", 11)

    assert (meta.page, meta.page_size, meta.skip) == (2, 5, 5)


@pytest.mark.parametrize("page", [0, -1, "abc", "1.5", "²", True])
def test_invalid_page_is_rejected(page) -> None:
    with pytest.raises(ValidationError) as exc_info:
        paginate(page, 10, 5)
    assert exc_info.value.detail == "invalid page"


def test_invalid_page_size_is_rejected() -> None:
    with pytest.raises(ValidationError) as exc_info:
        paginate(1, 0, 5)
    assert exc_info.value.field == "pageSize"


def test_to_dict_uses_camel_case_keys() -> None:
    assert paginate(1, 10, 0).to_dict() == {
        "page": 1,
        "pageSize": 10,
        "totalCount": 0,
        "totalPages": 1,
        "hasNextPage": False,
        "hasPreviousPage": False,
    }


def test_missing_query_param_uses_default() -> None:
    assert parse_page_param(None, 1) == 1
    assert parse_page_param("  ", 10, "pageSize") == 10
    assert parse_page_param("3", 1) == 3
    with pytest.raises(ValidationError):
        parse_page_param("zero", 1)


def test_superscript_digit_query_param_is_invalid() -> None:
    with pytest.raises(ValidationError) as exc_info:
        parse_page_param("²", 1)
    assert exc_info.value.detail == "invalid page"
