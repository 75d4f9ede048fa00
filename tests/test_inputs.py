import pytest

from feed_etl.errors import NoWorkUnits
from feed_etl.inputs import parse_links, read_links
from feed_etl.models import WorkUnit


def test_parse_links_with_header():
    lines = [
        "# exported 2024-05-01",
        "URL,Category",
        "https://www.temu.com/goods.html?goods_id=1,Home",
        "",
        "https://temu.to/k/abc,",
        ",Toys",
    ]
    assert parse_links(lines) == [
        WorkUnit("https://www.temu.com/goods.html?goods_id=1", "Home"),
        WorkUnit("https://temu.to/k/abc", None),
    ]


def test_parse_links_link_alias():
    lines = ["category,link", "Gifts,https://temu.to/k/x"]
    assert parse_links(lines) == [WorkUnit("https://temu.to/k/x", "Gifts")]


def test_parse_links_without_header():
    lines = [
        "https://temu.to/k/a",
        "Home,https://temu.to/k/b",
        "https://temu.to/k/c,Toys",
        "no url here",
    ]
    assert parse_links(lines) == [
        WorkUnit("https://temu.to/k/a"),
        WorkUnit("https://temu.to/k/b", "Home"),
        WorkUnit("https://temu.to/k/c", "Toys"),
    ]


def test_read_links_caps_max_items(tmp_path):
    path = tmp_path / "links.csv"
    path.write_text("url\n" + "\n".join(f"https://temu.to/k/{i}" for i in range(5)), encoding="utf-8")
    units = read_links(path, max_items=2)
    assert [u.source_url for u in units] == ["https://temu.to/k/0", "https://temu.to/k/1"]


def test_read_links_strips_bom(tmp_path):
    path = tmp_path / "links.csv"
    path.write_text("\ufeffurl,category\nhttps://temu.to/k/1,Home\n", encoding="utf-8")
    assert read_links(path) == [WorkUnit("https://temu.to/k/1", "Home")]


def test_missing_or_empty_links_file_is_fatal(tmp_path):
    with pytest.raises(NoWorkUnits):
        read_links(tmp_path / "absent.csv")
    empty = tmp_path / "empty.csv"
    empty.write_text("url,category\n# nothing yet\n", encoding="utf-8")
    with pytest.raises(NoWorkUnits):
        read_links(empty)


def test_parse_links_header_with_spaces():
    assert parse_links(["url, category", "https://temu.to/k/x, Home"]) == [
        WorkUnit("https://temu.to/k/x", "Home")
    ]
    assert parse_links([" category , url ", "Home, https://temu.to/k/y"]) == [
        WorkUnit("https://temu.to/k/y", "Home")
    ]
