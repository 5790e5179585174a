import pytest

from cmpkit.core.errors import DuplicateModel, UnknownModel


def test_ids_are_stable_and_names_unique(registry):
    a = registry.component("A")
    b = registry.component("B")
    assert a.id != b.id
    assert registry.get(a.id) is a
    assert registry.find("B") is b
    with pytest.raises(DuplicateModel):
        registry.component("A")
    with pytest.raises(UnknownModel):
        registry.require("Nope")


def test_anonymous_submodels_are_named_after_their_parent(registry):
    a = registry.component("A")
    sub = a.new_submodel()
    assert sub.name == f"A#{sub.id}"
    assert registry.parent_of(sub) is a


def test_submodels_recursive_and_direct(registry):
    a = registry.component("A")
    b = a.new_submodel("B")
    c = b.new_submodel("C")
    assert a.submodels() == [b, c]
    assert a.submodels(recursive=False) == [b]
    assert registry.is_submodel(c, a)
    assert not registry.is_submodel(a, c)


def test_deregister_sweeps_all_ancestors(registry):
    a = registry.component("A")
    b = a.new_submodel("B")
    c = b.new_submodel("C")
    d = a.new_submodel("D")

    removed = registry.deregister(b)

    assert removed == [b, c]
    assert a.submodels() == [d]
    assert b not in registry
    assert c not in registry
    assert registry.find("C") is None
    assert not registry.is_submodel(c, a)


def test_deregister_is_idempotent(registry):
    a = registry.component("A")
    b = a.new_submodel("B")
    registry.deregister(b)
    assert registry.deregister(b) == []
    assert len(registry) == 1
