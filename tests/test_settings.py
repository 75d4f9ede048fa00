import pytest

from feed_etl.errors import SettingsError
from feed_etl.settings import BASE_DIR, Settings, load_settings


def test_missing_default_file_gives_defaults(monkeypatch, tmp_path):
    monkeypatch.delenv("FEED_SETTINGS", raising=False)
    monkeypatch.setattr("feed_etl.settings.DEFAULT_SETTINGS_PATH", tmp_path / "none.yaml")
    settings = load_settings()
    assert settings == Settings()
    assert settings.scrape.concurrency == 6


def test_load_yaml(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        """
scrape:
  concurrency: 3
  sleep_between_categories_ms: [10, 20]
categories:
  Electronics: [phone, usb]
  Home: [lamp]
affiliate:
  appendParams: {ref: abc}
  categories:
    Home:
      baseRedirect: https://go.example/r
listings:
  - {name: Home, url: "https://www.temu.com/home.html"}
paths:
  feed: out/products.json
""",
        encoding="utf-8",
    )
    settings = load_settings(path)

    assert settings.scrape.concurrency == 3
    assert settings.scrape.sleep_between_categories_ms == (10, 20)
    assert [rule.name for rule in settings.categories] == ["Electronics", "Home"]
    assert settings.categories[0].keywords == ("phone", "usb")
    assert settings.affiliate.append_params == {"ref": "abc"}
    assert settings.affiliate.for_category("Home").base_redirect == "https://go.example/r"
    assert settings.affiliate.for_category("Toys") is None
    assert settings.listings[0].url == "https://www.temu.com/home.html"
    assert settings.paths.feed == BASE_DIR / "out" / "products.json"


def test_settings_from_env(monkeypatch, tmp_path):
    path = tmp_path / "env.yaml"
    path.write_text("scrape: {headless: false}\n", encoding="utf-8")
    monkeypatch.setenv("FEED_SETTINGS", str(path))
    assert load_settings().scrape.headless is False


@pytest.mark.parametrize(
    "content",
    [
        "scrape: {concurrency: 0}\n",
        "scrape: {history_cap_per_category: -1}\n",
        "scrape: {sleep_between_categories_ms: [5, 1]}\n",
        "- just\n- a list\n",
        "scrape: [unclosed\n",
    ],
)
def test_invalid_settings_raise(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(SettingsError):
        load_settings(path)


def test_explicit_missing_file_raises(tmp_path):
    with pytest.raises(SettingsError):
        load_settings(tmp_path / "missing.yaml")


def test_bundled_settings_file_is_valid():
    settings = load_settings(BASE_DIR / "config" / "settings.yaml")
    assert settings.categories
    assert settings.affiliate.for_category("Electronics").append_params["ref"] == "mycatalog-tech"
