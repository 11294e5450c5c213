from util.env_store import (
    delete_setting,
    get_bool,
    get_json,
    get_setting,
    set_bool,
    set_json,
    set_setting,
)


def test_setting_round_trip(app):
    for value in ["ghp_abc123", "with spaces and # hash", 'quote " inside', "$NOT_EXPANDED"]:
        set_setting("GITHUB_TOKEN", value)
        assert get_setting("GITHUB_TOKEN") == value


def test_keys_are_independent(app):
    set_setting("VIEW_MODE", "list")
    set_setting("GITHUB_TOKEN", "tok")
    delete_setting("GITHUB_TOKEN")

    assert get_setting("GITHUB_TOKEN") is None
    assert get_setting("VIEW_MODE") == "list"


def test_missing_key_returns_default(app):
    assert get_setting("NOPE") is None
    assert get_setting("NOPE", "fallback") == "fallback"
    # deleting a key that does not exist is a no-op
    delete_setting("NOPE")


def test_bool_and_json_helpers(app):
    assert get_bool("SAVE_FILTER") is False
    set_bool("SAVE_FILTER", True)
    assert get_bool("SAVE_FILTER") is True

    filters = {"searchQuery": "pi", "selectedTypes": ["ct"], "showUpdatable": None}
    set_json("FILTERS", filters)
    assert get_json("FILTERS") == filters


def test_writes_to_configured_env_file(app):
    set_setting("VIEW_MODE", "card")
    with open(app.config["ENV_FILE"]) as f:
        assert "VIEW_MODE" in f.read()


def test_none_value_deletes(app):
    set_setting("VIEW_MODE", "card")
    set_setting("VIEW_MODE", None)
    assert get_setting("VIEW_MODE") is None
