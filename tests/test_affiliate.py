import pytest

from feed_etl.affiliate import effective_options, rewrite, set_query_params, wrap_redirect
from feed_etl.settings import AffiliateOptions

VIEW_URL = "https://www.temu.com/goods.html?goods_id=601099512345678"


def test_no_options_returns_url_unchanged():
    assert rewrite(VIEW_URL, AffiliateOptions()) == VIEW_URL


def test_append_params():
    options = AffiliateOptions(append_params={"ref": "abc"})
    assert rewrite(VIEW_URL, options) == VIEW_URL + "&ref=abc"


def test_append_params_overwrite_existing():
    url = "https://www.temu.com/goods.html?goods_id=1&ref=old&ref=older&x=1"
    assert set_query_params(url, {"ref": "new"}) == (
        "https://www.temu.com/goods.html?goods_id=1&ref=new&x=1"
    )


def test_set_query_params_requires_absolute_url():
    with pytest.raises(ValueError):
        set_query_params("/goods.html?goods_id=1", {"ref": "a"})


def test_base_redirect_wraps_encoded_url():
    options = AffiliateOptions(append_params={"ref": "x"}, base_redirect="https://go.example/r")
    assert rewrite(VIEW_URL, options) == (
        "https://go.example/r?u="
        "https%3A%2F%2Fwww.temu.com%2Fgoods.html%3Fgoods_id%3D601099512345678%26ref%3Dx"
    )


def test_wrap_redirect_with_existing_query():
    assert wrap_redirect("https://go.example/r?aff=1", "https://a.b/c") == (
        "https://go.example/r?aff=1&u=https%3A%2F%2Fa.b%2Fc"
    )


def test_category_options_replace_global_wholesale():
    global_options = AffiliateOptions(append_params={"ref": "a", "src": "feed"}, base_redirect="https://go/r")
    category = AffiliateOptions(append_params={"ref": "b"})
    merged = effective_options(global_options, category)
    assert merged.append_params == {"ref": "b"}
    assert merged.base_redirect == "https://go/r"
    assert effective_options(global_options, None) is global_options


def test_rewrite_with_category_override():
    global_options = AffiliateOptions(append_params={"ref": "a"})
    category = AffiliateOptions(append_params={"ref": "tech"})
    assert rewrite(VIEW_URL, global_options, category) == VIEW_URL + "&ref=tech"


def test_relative_url_skips_param_injection():
    options = AffiliateOptions(append_params={"ref": "a"})
    assert rewrite("/goods.html?goods_id=1", options) == "/goods.html?goods_id=1"
