import pytest

from qbatch_engine.utils.di_container import DiContainer


# ----------------------------------------------------------------------
# Test helper classes (local test doubles)
# ----------------------------------------------------------------------
class DummyA:
    """A simple class for singleton/prototype tests."""

    def __init__(self, x: int, label: str):
        self.x = x
        self.label = label


class DummyB:
    """Another class for constructor mismatch testing."""

    def __init__(self, value: int):
        self.value = value


# Fully-qualified path strings for the test classes above.
DUMMYA_PATH = f"{__name__}.DummyA"
DUMMYB_PATH = f"{__name__}.DummyB"


# ----------------------------------------------------------------------
# Tests
# ----------------------------------------------------------------------
def test_singleton_scope_default():
    """Omitting `_scope_` caches the instance."""
    dicon = DiContainer({"obj": {"_target_": DUMMYA_PATH, "x": 1, "label": "a"}})

    first = dicon.get("obj")

    assert first is dicon.get("obj")
    assert first.x == 1
    assert first.label == "a"


def test_prototype_scope_creates_new_instances():
    dicon = DiContainer(
        {"obj": {"_target_": DUMMYA_PATH, "_scope_": "prototype", "x": 2, "label": "b"}}
    )

    assert dicon.get("obj") is not dicon.get("obj")


def test_unknown_dependency_raises_key_error():
    with pytest.raises(KeyError):
        DiContainer({}).get("missing")


def test_missing_target_raises_value_error():
    with pytest.raises(ValueError, match="Missing _target_"):
        DiContainer({"obj": {"x": 1}}).get("obj")


def test_constructor_mismatch_raises_type_error():
    dicon = DiContainer({"obj": {"_target_": DUMMYB_PATH, "wrong": 1}})

    with pytest.raises(TypeError, match="Failed to instantiate DummyB"):
        dicon.get("obj")


@pytest.mark.parametrize(
    "target",
    ["NoDotsHere", "qbatch_engine.no_such_module.Thing", f"{__name__}.Missing"],
)
def test_bad_target_raises_import_error(target):
    with pytest.raises(ImportError):
        DiContainer({"obj": {"_target_": target}}).get("obj")


def test_has_and_override():
    dicon = DiContainer({"obj": {"_target_": DUMMYB_PATH, "value": 3}})
    fake = DummyB(99)

    assert dicon.has("obj")
    assert not dicon.has("other")
    dicon.override("other", fake)

    assert dicon.has("other")
    assert dicon.get("other") is fake


def test_resolves_engine_components():
    dicon = DiContainer(
        {
            "buffer": {
                "_target_": "qbatch_engine.buffers.ScoredBuffer",
                "max_concurrency": 2,
                "poll_interval": 0.5,
            }
        }
    )

    buffer = dicon.get("buffer")

    assert buffer.max_concurrency == 2
    assert buffer.size() == 0


def test_unknown_scope_is_rejected():
    dicon = DiContainer({"obj": {"_target_": DUMMYB_PATH, "_scope_": "request", "value": 1}})

    with pytest.raises(ValueError, match="unknown _scope_"):
        dicon.get("obj")


def test_spec_separates_metadata_from_kwargs():
    dicon = DiContainer(
        {"obj": {"_target_": DUMMYA_PATH, "_scope_": "prototype", "x": 1, "label": "a"}}
    )

    spec = dicon.spec("obj")

    assert spec.target == DUMMYA_PATH
    assert spec.scope == "prototype"
    assert spec.kwargs == {"x": 1, "label": "a"}
