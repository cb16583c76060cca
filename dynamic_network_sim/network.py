"""
The evolving partnership network.

Edges are undirected and stored once, in a networkx Graph, with the step in which they were created and the
duration and persistence they were given by the dissolution model. Every node in the graph must be active in the
accompanying AttributeStore.

Removing an edge that does not exist raises EdgeNotFound when the network is strict (the default) and is silently
ignored otherwise. Dissolution and departures only remove edges that exist, so both behave the same either way.
"""
from typing import Iterator, List, Set, Tuple

import networkx as nx  # type: ignore

from dynamic_network_sim.attributes import AttributeStore, NodeId
from dynamic_network_sim.errors import EdgeNotFound, InvalidEdge

Edge = Tuple[NodeId, NodeId]


class NetworkState:
    """
    Undirected graph over the active nodes of an AttributeStore

    :param attributes: store used to check whether endpoints are active
    :param strict: whether removing a missing edge is an error
    """
    def __init__(self, attributes: AttributeStore, strict: bool = True):
        self.attributes = attributes
        self.strict = strict
        self.graph = nx.Graph()

    def add_node(self, node: NodeId):
        if not self.attributes.is_active(node):
            raise InvalidEdge(f"node {node} is not active")
        self.graph.add_node(node)

    def remove_node(self, node: NodeId) -> List[NodeId]:
        """
        Removes a node and all its edges from the graph

        :param node: node to remove
        :return: the former partners of the node
        """
        if node not in self.graph:
            return []
        partners = sorted(self.graph.neighbors(node))
        self.graph.remove_node(node)
        return partners

    def edges_of(self, node: NodeId) -> Set[NodeId]:
        if node not in self.graph:
            return set()
        return set(self.graph.neighbors(node))

    def has_edge(self, a: NodeId, b: NodeId) -> bool:
        return self.graph.has_edge(a, b)

    def add_edge(self, a: NodeId, b: NodeId, step: int, duration: float = 1.0, persistence: float = 0.0):
        """
        Activates the partnership between a and b

        :param a: one endpoint
        :param b: the other endpoint
        :param step: simulation step in which the edge is created
        :param duration: expected duration of the partnership
        :param persistence: probability that the edge survives each dissolution step
        """
        if a == b:
            raise InvalidEdge(f"self loop on node {a}")
        for node in (a, b):
            if not self.attributes.is_active(node):
                raise InvalidEdge(f"node {node} is not active")
        if self.graph.has_edge(a, b):
            raise InvalidEdge(f"edge ({a}, {b}) already exists")
        self.graph.add_edge(a, b, created=step, duration=duration, persistence=persistence)

    def remove_edge(self, a: NodeId, b: NodeId):
        if not self.graph.has_edge(a, b):
            if self.strict:
                raise EdgeNotFound((a, b))
            return
        self.graph.remove_edge(a, b)

    def degree(self, node: NodeId) -> int:
        if node not in self.graph:
            return 0
        return self.graph.degree(node)

    def edges(self, data: bool = False) -> Iterator:
        """Iterates over the edges, optionally with their attribute dicts"""
        return iter(self.graph.edges(data=data))

    @property
    def edge_count(self) -> int:
        return self.graph.number_of_edges()

    def check_invariants(self):
        """Asserts that the graph only touches active nodes, has no self loops and matches the active population"""
        assert nx.number_of_selfloops(self.graph) == 0, "self loops in the network"
        for a, b in self.graph.edges():
            assert self.attributes.is_active(a) and self.attributes.is_active(b), f"edge ({a}, {b}) is dangling"
        assert set(self.graph.nodes()) == set(self.attributes.active_nodes()), "graph and population mismatch"
