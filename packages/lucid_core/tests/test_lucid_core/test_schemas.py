from types import SimpleNamespace

from lucid_core import Page, PaginationParams, lucid_settings


def test_default_construction():
    params = PaginationParams.model_validate({})

    assert params.page == 1
    assert params.per_page == lucid_settings.DEFAULT_PER_PAGE
    assert params.get_offset() == 0


def test_offset_for_later_pages():
    params = PaginationParams.model_validate({"page": 3, "per_page": 10})

    assert params.get_offset() == 20


def test_extra_fields_are_ignored():
    params = PaginationParams.model_validate({"per_page": 10, "unknown": "value"})

    assert params.per_page == 10
    assert not hasattr(params, "unknown")


def test_per_page_clamped_to_max():
    params = PaginationParams.model_validate(
        {"per_page": lucid_settings.MAX_PER_PAGE + 100}
    )

    assert params.per_page == lucid_settings.MAX_PER_PAGE


def test_per_page_and_page_minimum_is_one():
    params = PaginationParams.model_validate({"page": -2, "per_page": 0})

    assert params.page == 1
    assert params.per_page == 1


def test_from_request_reads_page():
    request = SimpleNamespace(query_params={"page": "4"})

    params = PaginationParams.from_request(request, per_page=25)

    assert params.page == 4
    assert params.per_page == 25
    assert params.get_offset() == 75


def test_from_request_defaults_to_first_page():
    assert PaginationParams.from_request(None).page == 1
    assert PaginationParams.from_request(SimpleNamespace(query_params={})).page == 1
    assert (
        PaginationParams.from_request(SimpleNamespace(query_params={"page": "x"})).page
        == 1
    )


def test_page_metadata():
    page = Page[int](items=[1, 2], total=5, per_page=2, current_page=1)

    assert page.last_page == 3
    assert page.has_more is True
    assert page.model_dump()["last_page"] == 3


def test_last_page_of_empty_result():
    page = Page[int](items=[], total=0, per_page=10, current_page=1)

    assert page.last_page == 1
    assert page.has_more is False
