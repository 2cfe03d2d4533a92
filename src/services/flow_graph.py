"""
Flow Graph
Compiled, read-only view of a flow definition.
Edges are split into control-flow steps (keyed by handle) and attached children
(keyed by attachment kind) so handlers never match handle strings themselves.
"""
from typing import Dict, List, Optional

from exceptions.flow_exception import FlowDefinitionException
from models.flow_data import FlowData, FlowNode, NodeType

# Handles that link a node to children describing its own payload, never traversed
ATTACHMENT_HANDLES = frozenset({"buttons", "button", "quickReplies", "items", "cards"})

MESSAGE_HANDLE = "message"
NEXT_HANDLE = "next"
TRUE_HANDLE = "true"
FALSE_HANDLE = "false"

# Node type -> handle its editor saves the "continue" edge under
CONTINUATION_HANDLES = {
    NodeType.TEXT.value: MESSAGE_HANDLE,
    NodeType.CAROUSEL.value: NEXT_HANDLE,
}


class FlowGraph:
    """
    Immutable graph built once per run from a FlowData document.

    Raises:
        FlowDefinitionException: duplicate node ids, no start node, more than one
            start node, or an edge referencing a node that does not exist
    """

    def __init__(self, flow: FlowData):
        self.flow_id = flow.id
        self.nodes: Dict[str, FlowNode] = {}
        # next_steps[source][handle] -> target, first authored edge wins
        self.next_steps: Dict[str, Dict[Optional[str], str]] = {}
        # attached_children[source][kind] -> targets in authored order
        self.attached_children: Dict[str, Dict[str, List[str]]] = {}

        for node in flow.nodes:
            if node.id in self.nodes:
                raise FlowDefinitionException(f"Duplicate node id {node.id} in flow {flow.id}")
            self.nodes[node.id] = node

        start_nodes = [node for node in flow.nodes if node.type == NodeType.START.value]
        if not start_nodes:
            raise FlowDefinitionException(f"Flow {flow.id} has no start node")
        if len(start_nodes) > 1:
            raise FlowDefinitionException(f"Flow {flow.id} has {len(start_nodes)} start nodes, expected exactly one")
        self.start_node_id = start_nodes[0].id

        for edge in flow.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in self.nodes:
                    raise FlowDefinitionException(
                        f"Edge {edge.id} in flow {flow.id} references unknown node {endpoint}"
                    )
            handle = edge.sourceHandle or None
            if handle in ATTACHMENT_HANDLES:
                self.attached_children.setdefault(edge.source, {}).setdefault(handle, []).append(edge.target)
            else:
                self.next_steps.setdefault(edge.source, {}).setdefault(handle, edge.target)

    def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    def get_node(self, node_id: str) -> FlowNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise FlowDefinitionException(f"Node {node_id} not found in flow {self.flow_id}")
        return node

    def start_node(self) -> FlowNode:
        return self.nodes[self.start_node_id]

    def next_node_id(self, node_id: str, handle: Optional[str] = None) -> Optional[str]:
        """
        Target of the control-flow edge leaving node_id through handle, if any
        """
        return self.next_steps.get(node_id, {}).get(handle)

    def default_successor(self, node: FlowNode) -> Optional[str]:
        """
        Node to run after node when it does not pick a branch.
        Text nodes continue through their "message" handle and carousels through "next",
        both falling back to the unlabeled edge.
        """
        continuation_handle = CONTINUATION_HANDLES.get(node.type)
        if continuation_handle is not None:
            target = self.next_node_id(node.id, continuation_handle)
            if target is not None:
                return target
        return self.next_node_id(node.id, None)

    def children(self, node_id: str, *kinds: str) -> List[FlowNode]:
        """
        Attached child nodes of node_id for the given attachment kinds, in authored order
        """
        attached = self.attached_children.get(node_id, {})
        return [self.nodes[target] for kind in kinds for target in attached.get(kind, [])]

    def option_target(self, node_id: str, index: int, prefix: str) -> Optional[str]:
        """
        Target of the indexed option edge of a branch node (button-N or reply-N)
        """
        return self.next_node_id(node_id, f"{prefix}-{index}")
