"""
Per-node attribute storage.

Nodes are identified by integers allocated in increasing order. Identifiers are never reused: once a node departs its
id is retired, and the values it had are kept around but can no longer be read or written through the store.
"""
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from dynamic_network_sim.errors import InactiveNode, UnknownAttribute

NodeId = int


class AttributeStore:
    """
    Holds the declared attributes of every node in the population, and which nodes are currently active.

    :param attributes: names of the attributes nodes can have. Any other name is rejected with UnknownAttribute
    """
    def __init__(self, attributes: Iterable[str]):
        self._declared = frozenset(attributes)
        self._values: Dict[str, Dict[NodeId, Any]] = {name: {} for name in self._declared}
        # dicts keep insertion order, and ids are allocated in increasing order, so this is always sorted
        self._active: Dict[NodeId, None] = {}
        self._nextId = 0

    @property
    def declared(self) -> frozenset:
        return self._declared

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, node: NodeId) -> bool:
        return node in self._active

    def _check_attribute(self, attr: str):
        if attr not in self._declared:
            raise UnknownAttribute(attr)

    def _check_active(self, node: NodeId):
        if node not in self._active:
            raise InactiveNode(node)

    def allocate(self, attrs: Dict[str, Any]) -> NodeId:
        """
        Adds a new active node to the population

        :param attrs: initial values for the node's attributes. Attributes not listed are left unset
        :return: the id of the new node
        """
        for name in attrs:
            self._check_attribute(name)
        node = self._nextId
        self._nextId += 1
        for name, value in attrs.items():
            self._values[name][node] = value
        self._active[node] = None
        return node

    def deactivate(self, node: NodeId):
        """Removes the node from the active population. Its id will never be handed out again."""
        self._check_active(node)
        del self._active[node]

    def is_active(self, node: NodeId) -> bool:
        return node in self._active

    def get(self, node: NodeId, attr: str) -> Any:
        self._check_attribute(attr)
        self._check_active(node)
        try:
            return self._values[attr][node]
        except KeyError:
            raise UnknownAttribute(f"{attr} was never set for node {node}") from None

    def set(self, node: NodeId, attr: str, value: Any):
        self._check_attribute(attr)
        self._check_active(node)
        self._values[attr][node] = value

    def active_nodes(self) -> List[NodeId]:
        """All active nodes, in ascending id order"""
        return list(self._active)

    def nodes_where(self, attr: str, value: Any) -> List[NodeId]:
        """Active nodes whose attribute ``attr`` equals ``value``, in ascending id order"""
        self._check_attribute(attr)
        values = self._values[attr]
        return [node for node in self._active if values.get(node) == value]

    def count_by(self, attr: str, nodes: Optional[Iterable[NodeId]] = None) -> Counter:
        """
        Counts the active nodes (or the given subset of them) by the value of an attribute

        :param attr: attribute to group by
        :param nodes: restrict the count to these nodes, all of which must be active
        :return: Counter from attribute value to number of nodes
        """
        self._check_attribute(attr)
        values = self._values[attr]
        if nodes is None:
            nodes = self._active
        else:
            nodes = list(nodes)
            for node in nodes:
                self._check_active(node)
        return Counter(values.get(node) for node in nodes)
