import pytest

from dynamic_network_sim.attributes import AttributeStore
from dynamic_network_sim.errors import InactiveNode, UnknownAttribute


@pytest.fixture
def store():
    return AttributeStore(["group", "status"])


# pylint: disable=redefined-outer-name
def test_allocate_returns_increasing_ids(store):
    ids = [store.allocate({"group": 0}) for _ in range(3)]

    assert ids == [0, 1, 2]
    assert len(store) == 3
    assert store.active_nodes() == [0, 1, 2]


# pylint: disable=redefined-outer-name
def test_ids_are_never_reused(store):
    first = store.allocate({"group": 0})
    store.deactivate(first)
    second = store.allocate({"group": 0})

    assert second != first
    assert first not in store
    assert second in store


# pylint: disable=redefined-outer-name
def test_get_and_set(store):
    node = store.allocate({"group": 1, "status": "S"})
    store.set(node, "status", "I")

    assert store.get(node, "group") == 1
    assert store.get(node, "status") == "I"


# pylint: disable=redefined-outer-name
def test_unknown_attribute(store):
    node = store.allocate({"group": 1})

    with pytest.raises(UnknownAttribute):
        store.get(node, "age")
    with pytest.raises(UnknownAttribute):
        store.set(node, "age", 3)
    with pytest.raises(UnknownAttribute):
        store.allocate({"age": 3})


# pylint: disable=redefined-outer-name
def test_unset_attribute_is_unknown(store):
    node = store.allocate({"group": 1})

    with pytest.raises(UnknownAttribute):
        store.get(node, "status")


# pylint: disable=redefined-outer-name
def test_inactive_node(store):
    node = store.allocate({"group": 1})
    store.deactivate(node)

    with pytest.raises(InactiveNode):
        store.get(node, "group")
    with pytest.raises(InactiveNode):
        store.set(node, "group", 0)
    with pytest.raises(InactiveNode):
        store.deactivate(node)
    assert not store.is_active(node)


# pylint: disable=redefined-outer-name
def test_never_allocated_node_is_inactive(store):
    with pytest.raises(InactiveNode):
        store.get(7, "group")


# pylint: disable=redefined-outer-name
def test_nodes_where_skips_departed(store):
    nodes = [store.allocate({"group": i % 2}) for i in range(6)]
    store.deactivate(nodes[2])

    assert store.nodes_where("group", 0) == [0, 4]
    assert store.nodes_where("group", 1) == [1, 3, 5]


# pylint: disable=redefined-outer-name
def test_count_by(store):
    for i in range(5):
        store.allocate({"group": i % 2, "status": "I" if i == 0 else "S"})
    store.deactivate(4)

    assert store.count_by("group") == {0: 2, 1: 2}
    assert store.count_by("status", [0, 1]) == {"I": 1, "S": 1}


# pylint: disable=redefined-outer-name
def test_count_by_rejects_inactive_subset(store):
    node = store.allocate({"group": 0})
    store.deactivate(node)

    with pytest.raises(InactiveNode):
        store.count_by("group", [node])


def test_errors_are_key_errors():
    assert issubclass(UnknownAttribute, KeyError)
    assert issubclass(InactiveNode, KeyError)
