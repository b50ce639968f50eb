"""Turns the edge list of a design into a buildable construction sequence"""
import logging
import warnings
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from config import SafetyBounds
from grammar import MAX_NODES, node_id_char
from models import (Design, Edge, Joint, Connection, Assembly, EvaluationContext,
                    CapacityExceeded, RuntimeSafetyCutoff)

logger = logging.getLogger(__name__)

# build handles of a joint, keyed by the grid step they build towards
POSITIVE_X = "posx"
NEGATIVE_X = "negx"
POSITIVE_Z = "posz"
NEGATIVE_Z = "negz"

HANDLES = {
    (1, 0): POSITIVE_X,
    (-1, 0): NEGATIVE_X,
    (0, 1): POSITIVE_Z,
    (0, -1): NEGATIVE_Z,
}


def sequence_edges(edges: List[Edge]) -> List[Edge]:
    """
    Orders edges by ascending destination index. The first edge into a
    destination is built at that index, every later edge into the same
    destination closes a cycle and is built after all others, in the order
    it was given.
    """
    steps: Dict[int, Edge] = {}
    cycle_edges: List[Edge] = []
    max_step = 0

    for edge in edges:
        if edge.to_index not in steps:
            steps[edge.to_index] = edge
        else:
            cycle_edges.append(edge)
        max_step = max(max_step, edge.to_index)

    for edge in cycle_edges:
        max_step += 1
        steps[max_step] = edge

    return [steps[i] for i in range(max_step + 1) if i in steps]


class AssemblySequencer():
    """
    Builds the joint grid of a design one connection at a time, starting
    from a locked root joint at the grid origin. Joints are kept in an
    arena (a list), connections refer to arena positions until the end so
    renaming a joint never invalidates them.
    """
    def __init__(self, design: Design, context: EvaluationContext,
                 bounds: Optional[SafetyBounds] = None):
        self.design = design
        self.context = context
        self.bounds = bounds if bounds is not None else SafetyBounds()

        self.joints: List[Joint] = []
        self.used_handles: List[set] = []
        # (from arena position, to arena position, new joint, centre)
        self.links: List[Tuple[int, int, bool, Tuple[float, float]]] = []
        self.order: List[Edge] = []
        self.cutoffs: List[str] = []

    def assemble(self) -> Assembly:
        self.addRootJoint()

        for step, edge in enumerate(sequence_edges(self.design.edges)):
            if step >= self.bounds.assembly_steps:
                msg = f"assembly stopped after {step} of {len(self.design.edges)} edges"
                warnings.warn(msg, RuntimeSafetyCutoff)
                self.cutoffs.append(msg)
                break

            added = self.buildEdge(edge)
            self.reconcile(edge)
            self.order.append(replace(edge, introduces_new_node=added))

        connections = [Connection(self.joints[a].index, self.joints[b].index, added, center)
                       for a, b, added, center in self.links]

        return Assembly(self.joints, connections, self.order, self.cutoffs)

    def addRootJoint(self) -> None:
        root = Joint(self.context.next_node_index(), 0, 0, locked=True)
        self.joints.append(root)
        self.used_handles.append(set())

    def addJoint(self, grid_x: int, grid_z: int) -> int:
        if self.context.node_counter >= MAX_NODES:
            raise CapacityExceeded(f"more than {MAX_NODES} joints in the assembly")
        self.joints.append(Joint(self.context.next_node_index(), grid_x, grid_z))
        self.used_handles.append(set())
        return len(self.joints) - 1

    def findJoint(self, index: int) -> Optional[int]:
        for position, joint in enumerate(self.joints):
            if joint.index == index:
                return position
        return None

    def jointAt(self, grid_x: int, grid_z: int) -> Optional[int]:
        for position, joint in enumerate(self.joints):
            if joint.grid_x == grid_x and joint.grid_z == grid_z:
                return position
        return None

    def buildEdge(self, edge: Edge) -> bool:
        """Adds the connector of an edge, returns True if it created a joint"""
        start = self.design.node(edge.from_index)
        end = self.design.node(edge.to_index)
        label = node_id_char(edge.from_index) + node_id_char(edge.to_index)

        source = self.findJoint(edge.from_index)
        if source is None:
            # destination order is not a build order for this design
            msg = f"edge {label} skipped, node {label[0]} is not built yet"
            warnings.warn(msg, RuntimeSafetyCutoff)
            self.cutoffs.append(msg)
            return False

        step = (end.grid_x - start.grid_x, end.grid_z - start.grid_z)
        handle = HANDLES.get(step)
        if handle is None:
            logger.debug("Edge %s skipped, nodes are not neighbours", label)
            return False
        if handle in self.used_handles[source]:
            logger.debug("Edge %s skipped, handle %s already used", label, handle)
            return False

        joint = self.joints[source]
        target_x, target_z = joint.grid_x + step[0], joint.grid_z + step[1]
        center = (joint.grid_x + step[0] / 2.0, joint.grid_z + step[1] / 2.0)

        # reuse a joint at the end point, this closes a cycle
        target = self.jointAt(target_x, target_z)
        added = target is None
        if added:
            target = self.addJoint(target_x, target_z)

        if any(c == center for _, _, _, c in self.links):
            logger.debug("Edge %s skipped, a connector is already at %s", label, center)
            return added

        self.links.append((source, target, added, center))
        self.used_handles[source].add(handle)
        return added

    def reconcile(self, edge: Edge) -> None:
        """Gives the unlocked joint at the edge's end the id the design declares"""
        end = self.design.node(edge.to_index)
        candidates = [joint for joint in self.joints
                      if joint.grid_x == end.grid_x and joint.grid_z == end.grid_z
                      and not joint.locked]
        if not candidates:
            return

        joint = min(candidates, key=lambda j: j.index)
        if joint.index != edge.to_index:
            joint.index = edge.to_index
            self.context.node_counter = max(edge.to_index + 1, self.context.node_counter)
        joint.locked = True


def assemble(design: Design, context: EvaluationContext,
             bounds: Optional[SafetyBounds] = None) -> Assembly:
    return AssemblySequencer(design, context, bounds).assemble()
