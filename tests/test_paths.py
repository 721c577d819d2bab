from fne.paths import MISSING, get_path, has_path, set_path


def test_get_path_walks_nested_mappings() -> None:
    doc = {"client": {"contact": {"phone": "0707070707"}}}

    assert get_path(doc, "client.contact.phone") == "0707070707"
    assert get_path(doc, "client.contact") == {"phone": "0707070707"}


def test_get_path_distinguishes_missing_from_none() -> None:
    doc = {"client": {"email": None, "name": "Acme"}}

    assert get_path(doc, "client.email") is None
    assert get_path(doc, "client.phone") is MISSING
    assert get_path(doc, "client.name.first") is MISSING
    assert get_path(doc, "supplier.name") is MISSING


def test_get_path_indexes_lists() -> None:
    doc = {"items": [{"description": "A"}, {"description": "B"}]}

    assert get_path(doc, "items.1.description") == "B"
    assert get_path(doc, "items.5.description") is MISSING


def test_has_path_uses_the_same_walk() -> None:
    doc = {"a": {"b": None}}

    assert has_path(doc, "a.b") is True
    assert has_path(doc, "a.c") is False


def test_set_path_creates_intermediate_mappings_in_place() -> None:
    doc: dict = {"keep": 1}

    set_path(doc, "client.contact.phone", "01")

    assert doc == {"keep": 1, "client": {"contact": {"phone": "01"}}}


def test_set_path_overwrites_leaf_and_non_mapping_intermediates() -> None:
    doc: dict = {"client": "flat", "x": {"y": 1}}

    set_path(doc, "client.name", "Acme")
    set_path(doc, "x.y", 2)

    assert doc == {"client": {"name": "Acme"}, "x": {"y": 2}}


def test_set_path_into_existing_list_element() -> None:
    doc: dict = {"items": [{"description": "old", "amount": 1}]}

    set_path(doc, "items.0.description", "new")

    assert doc == {"items": [{"description": "new", "amount": 1}]}


def test_set_path_pads_lists_up_to_the_index() -> None:
    doc: dict = {"items": [{"description": "Z"}], "codes": ["TVA"]}

    set_path(doc, "items.3.description", "extra")
    set_path(doc, "codes.2", "TVAB")

    assert doc["items"] == [{"description": "Z"}, None, None, {"description": "extra"}]
    assert doc["codes"] == ["TVA", None, "TVAB"]
