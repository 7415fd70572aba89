import pytest

from drillsync.infrastructure.catalog import load_catalog, parse_catalog

CATALOG = """
modules:
  - number: 1
    name: Basics
    exercises:
      - id: loop
        label: Loops
        category: warmup
        variants: [v1, v2]
      - id: swap
  - number: 2
    exercises:
      - id: map
        variants: [v1]
      - label: missing id
  - name: no number
"""


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(CATALOG)
    return path


def test_variants_become_keys(catalog_file):
    items = load_catalog(catalog_file)

    assert list(items) == ["m1_loop_v1", "m1_loop_v2", "m1_swap", "m2_map_v1"]

    loop = items["m1_loop_v2"]
    assert loop.label == "Basics: Loops"
    assert loop.module == 1
    assert loop.category == "warmup"
    assert loop.problem == "loop"
    assert loop.variant == "v2"


def test_exercise_without_variants(catalog_file):
    swap = load_catalog(catalog_file)["m1_swap"]
    assert swap.variant is None
    assert swap.label == "Basics: swap"


def test_module_name_defaults(catalog_file):
    assert load_catalog(catalog_file)["m2_map_v1"].label == "Module 2: map"


@pytest.mark.parametrize("data", [None, [], "text", {"modules": None}])
def test_parse_unexpected_shapes(data):
    assert parse_catalog(data) == {}


def test_unreadable_catalog(tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("modules: [unclosed")
    assert load_catalog(bad) == {}
    assert load_catalog(tmp_path / "missing.yaml") == {}


def test_module_with_invalid_number_is_skipped():
    data = {
        "modules": [
            {"number": "two", "exercises": [{"id": "map"}]},
            {"number": [3], "exercises": [{"id": "set"}]},
            {"number": "4", "exercises": [{"id": "sort"}]},
        ]
    }
    assert list(parse_catalog(data)) == ["m4_sort"]
