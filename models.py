"""Core data structures for designs, placed components and evaluation results"""
import numpy as np
from enum import Enum
from typing import List, Optional, Tuple, Any
from dataclasses import dataclass, field


class ComponentType(Enum):
    """Component hosted by a node, valued by its grammar digit"""
    STRUCTURE = 0
    MOTOR_CW = 1
    MOTOR_CCW = 2
    FOIL = 3
    NONE = 4


class ComponentCategory(Enum):
    STRUCTURE = "structure"
    MOTOR_CW = "motorcw"
    MOTOR_CCW = "motorccw"
    CONNECTOR = "connection"
    FOIL = "foil"

    @property
    def is_motor(self) -> bool:
        return self in (ComponentCategory.MOTOR_CW, ComponentCategory.MOTOR_CCW)


class Quadrant(Enum):
    FRONT = "FRONT"
    BACK = "BACK"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FRONTLEFT = "FRONTLEFT"
    FRONTRIGHT = "FRONTRIGHT"
    BACKLEFT = "BACKLEFT"
    BACKRIGHT = "BACKRIGHT"


OPPOSITE_QUADRANT = {
    Quadrant.FRONT: Quadrant.BACK,
    Quadrant.BACK: Quadrant.FRONT,
    Quadrant.LEFT: Quadrant.RIGHT,
    Quadrant.RIGHT: Quadrant.LEFT,
    Quadrant.FRONTLEFT: Quadrant.BACKRIGHT,
    Quadrant.BACKRIGHT: Quadrant.FRONTLEFT,
    Quadrant.FRONTRIGHT: Quadrant.BACKLEFT,
    Quadrant.BACKLEFT: Quadrant.FRONTRIGHT,
}


class FlightPhase(Enum):
    HOVERING = 0
    FORWARD_FLIGHT = 1


class TerminationStatus(Enum):
    SUCCESS = "Success"
    HIT_BOUNDARY = "HitBoundary"
    COULD_NOT_STABILIZE = "CouldNotStabilize"
    FAILURE = "Failure"


# Errors
class DesignError(ValueError):
    """A design that cannot be evaluated"""


class InvalidGrammar(DesignError):
    pass


class OutOfRange(InvalidGrammar):
    """Position character outside the position alphabet"""


class CapacityExceeded(DesignError):
    pass


class NoStructure(DesignError):
    pass


class NumericParseFailure(DesignError):
    pass


class RuntimeSafetyCutoff(RuntimeWarning):
    """An iteration bound was reached and the result is partial"""


@dataclass
class Node:
    index: int
    grid_x: int
    grid_z: int
    component_type: ComponentType
    size: int = 0
    locked: bool = False


@dataclass
class Edge:
    from_index: int
    to_index: int
    introduces_new_node: bool = True


@dataclass
class Design:
    nodes: List[Node]
    edges: List[Edge]
    payload_capacity: float
    controller_index: int

    def node(self, index: int) -> Optional[Node]:
        for node in self.nodes:
            if node.index == index:
                return node
        return None


@dataclass
class Joint:
    """A placed node of the construction grid"""
    index: int
    grid_x: int
    grid_z: int
    locked: bool = False


@dataclass
class Connection:
    from_index: int
    to_index: int
    introduces_new_node: bool
    # connector centre in grid units, along x or z
    center: Tuple[float, float]


@dataclass
class Assembly:
    joints: List[Joint]
    connections: List[Connection]
    # edges in build order
    order: List[Edge]
    cutoffs: List[str] = field(default_factory=list)

    def joint(self, index: int) -> Optional[Joint]:
        for joint in self.joints:
            if joint.index == index:
                return joint
        return None


@dataclass(eq=False)
class PhysicalComponent:
    """A placed part, compared by identity"""
    category: ComponentCategory
    position: np.ndarray
    # staged bounding box size
    extents: np.ndarray
    mass: float
    drag: float
    quadrant: Optional[Quadrant] = None
    max_thrust: float = 0.0
    node_index: int = -1
    scale: float = 1.0
    handle: Any = None
    connected: bool = False


@dataclass
class TrajectorySample:
    time: float
    x: float
    y: float
    z: float
    qx: float
    qy: float
    qz: float
    qw: float


@dataclass
class TerminationResult:
    status: TerminationStatus
    distance: float
    velocity: float
    cost: float


@dataclass
class SimulationState:
    """State of the flying vehicle, the position is its centre of mass"""
    elapsed_time: float = 0.0
    steps: int = 0
    throttle: float = 0.0
    phase: FlightPhase = FlightPhase.HOVERING
    energy_used: float = 0.0

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    # quaternion (x, y, z, w) of the main structure
    orientation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))

    terminal: Optional[TerminationResult] = None


@dataclass
class EvaluationResult:
    status: TerminationStatus
    distance: float
    velocity: float
    cost: float
    payload_capacity: float = -1
    trajectory: Optional[List[TrajectorySample]] = None
    cutoffs: List[str] = field(default_factory=list)

    @classmethod
    def failure(cls, payload_capacity: float = -1, cutoffs: Optional[List[str]] = None):
        return cls(TerminationStatus.FAILURE, -1, -1, -1,
                   payload_capacity=payload_capacity,
                   cutoffs=list(cutoffs or []))


@dataclass
class EvaluationContext:
    """State shared by the components of one evaluation.

    Created fresh for every evaluation so nothing leaks between two designs
    evaluated in the same process.
    """
    node_counter: int = 0
    collision: bool = False

    def next_node_index(self) -> int:
        index = self.node_counter
        self.node_counter += 1
        return index
