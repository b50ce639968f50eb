"""Physical copy of an assembled design: components, masses, cost and battery"""
import logging
import math
import warnings
from typing import List, Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from config import OracleConfig, ScoringConstants
from models import (Design, Assembly, PhysicalComponent, ComponentType, ComponentCategory,
                    Quadrant, NoStructure, RuntimeSafetyCutoff)

logger = logging.getLogger(__name__)

# structures and foils sit rotated 45 degrees on the grid, like the flight frame
COMPONENT_ORIENTATION = {
    ComponentCategory.STRUCTURE: Rotation.from_euler('y', 45, degrees=True),
    ComponentCategory.FOIL: Rotation.from_euler('yx', [45, -10], degrees=True),
}

CATEGORY_OF_TYPE = {
    ComponentType.STRUCTURE: ComponentCategory.STRUCTURE,
    ComponentType.MOTOR_CW: ComponentCategory.MOTOR_CW,
    ComponentType.MOTOR_CCW: ComponentCategory.MOTOR_CCW,
    ComponentType.FOIL: ComponentCategory.FOIL,
}

# order in which components join the spanning connection
CONNECTION_ORDER = [ComponentCategory.STRUCTURE, ComponentCategory.MOTOR_CCW,
                    ComponentCategory.MOTOR_CW, ComponentCategory.CONNECTOR,
                    ComponentCategory.FOIL]


def classify_quadrant(offset_x: float, offset_z: float,
                      tolerance: float = 0.01) -> Optional[Quadrant]:
    """
    Quadrant of a motor from its grid offset to the vehicle centre. The offset
    is turned 45 degrees about the vertical so that +x points forward and +z
    to the left of the vehicle.
    """
    x, _, z = Rotation.from_euler('y', 45, degrees=True).apply([offset_x, 0.0, offset_z])

    if x > tolerance and z > tolerance:
        return Quadrant.FRONTLEFT
    elif x > tolerance and z < -tolerance:
        return Quadrant.FRONTRIGHT
    elif x < -tolerance and z < -tolerance:
        return Quadrant.BACKRIGHT
    elif x < -tolerance and z > tolerance:
        return Quadrant.BACKLEFT
    elif x > tolerance and abs(z) < tolerance:
        return Quadrant.FRONT
    elif x < -tolerance and abs(z) < tolerance:
        return Quadrant.BACK
    elif z > tolerance and abs(x) < tolerance:
        return Quadrant.LEFT
    elif z < -tolerance and abs(x) < tolerance:
        return Quadrant.RIGHT
    return None


def battery_energy(structure_weight: float,
                   scoring: Optional[ScoringConstants] = None) -> float:
    """
    Low fidelity energy rule: the 17.7 lb base design carries about 570 Wh,
    squared so that larger vehicles improve faster than linearly.
    """
    if scoring is None:
        scoring = ScoringConstants()
    return (structure_weight / scoring.baseline_structure_weight) ** 2 \
        * scoring.baseline_battery_energy


def vehicle_cost(structure_weight: float, motor_weight: float, connection_weight: float,
                 foil_weight: float, motor_count: int,
                 scoring: Optional[ScoringConstants] = None) -> float:
    if scoring is None:
        scoring = ScoringConstants()
    # airframe by weight, foils per pound, controller plus one ESC per motor
    return (structure_weight + motor_weight + connection_weight) * scoring.structure_cost \
        + foil_weight * scoring.foil_cost \
        + (scoring.controller_cost + scoring.motor_controller_cost * motor_count)


def box_inertia(mass: float, extents: np.ndarray) -> np.ndarray:
    a, b, c = extents
    return np.diag([mass * (b**2 + c**2) / 12,
                    mass * (a**2 + c**2) / 12,
                    mass * (a**2 + b**2) / 12])


class VehicleModel():
    def __init__(self, design: Design, assembly: Assembly,
                 config: Optional[OracleConfig] = None, placer=None):
        """
        Args:
            design: decoded design, supplies component types and sizes
            assembly: placed joints and connections of the design
            config: evaluation settings
            placer: optional rendering collaborator with
                    place(category, position, orientation, scale) -> handle
                    and remove(handle)
        """
        self.design = design
        self.assembly = assembly
        self.config = config if config is not None else OracleConfig()
        self.placer = placer

        self.components: List[PhysicalComponent] = []
        self.links: List[Tuple[int, int]] = []
        self.cutoffs: List[str] = []
        self.main_structure: Optional[PhysicalComponent] = None
        self.main_structure_position: Optional[np.ndarray] = None
        self.clearTotals()

    def clearTotals(self) -> None:
        self.totalStructureWeight = 0.0
        self.totalMotorWeight = 0.0
        self.totalConnectionWeight = 0.0
        self.totalFoilWeight = 0.0

    @property
    def motors(self) -> List[PhysicalComponent]:
        return [c for c in self.components if c.category.is_motor]

    @property
    def foils(self) -> List[PhysicalComponent]:
        return [c for c in self.components if c.category == ComponentCategory.FOIL]

    def motors_in(self, quadrant: Quadrant) -> List[PhysicalComponent]:
        return [m for m in self.motors if m.quadrant == quadrant]

    def componentScale(self, size: int) -> float:
        """Each size step grows a component by a quarter, shrinking stops below min_scale"""
        geometry = self.config.geometry
        limit = self.config.bounds.sizing_steps

        if size > limit:
            msg = f"size {size} clamped to {limit}"
            warnings.warn(msg, RuntimeSafetyCutoff)
            self.cutoffs.append(msg)

        scale = 1.0
        for _ in range(min(size, limit)):
            scale += geometry.size_step
        for _ in range(min(-size, limit)):
            if scale <= geometry.min_scale:
                break
            scale -= geometry.size_step
        return scale

    def designerParts(self) -> List[Tuple[ComponentCategory, np.ndarray, np.ndarray, int, float]]:
        """(category, position, bounding size, node index, scale) of every part in the designer"""
        geometry = self.config.geometry
        length = self.config.staging.connection_length
        parts = []

        for joint in sorted(self.assembly.joints, key=lambda j: j.index):
            node = self.design.node(joint.index)
            if node is None or node.component_type == ComponentType.NONE:
                continue

            category = CATEGORY_OF_TYPE[node.component_type]
            scale = self.componentScale(node.size)
            match category:
                case ComponentCategory.STRUCTURE:
                    base = geometry.structure
                case ComponentCategory.MOTOR_CW | ComponentCategory.MOTOR_CCW:
                    base = geometry.motor
                case ComponentCategory.FOIL:
                    base = geometry.foil

            position = np.array([joint.grid_x * length, 0.0, joint.grid_z * length])
            parts.append((category, position, scale * np.array(base), joint.index, scale))

        w = geometry.connector_width
        for connection in self.assembly.connections:
            cx, cz = connection.center
            along_x = not float(cx).is_integer()
            size = np.array([length, w, w]) if along_x else np.array([w, w, length])
            position = np.array([cx * length, 0.0, cz * length])
            parts.append((ComponentCategory.CONNECTOR, position, size, -1, 1.0))

        return parts

    def build(self) -> None:
        """Places the staged copy of the design, raises NoStructure without a structure"""
        staging = self.config.staging
        geometry = self.config.geometry
        tolerance = self.config.bounds.quadrant_tolerance

        self.clear()
        parts = self.designerParts()

        # bounds of the design in the designer
        if parts:
            lows = np.min([p - s / 2 for _, p, s, _, _ in parts], axis=0)
            highs = np.max([p + s / 2 for _, p, s, _, _ in parts], axis=0)
            center = (lows + highs) / 2.0
        else:
            center = np.zeros(3)

        offset = np.array([0.0, staging.staging_height, staging.staging_depth])
        reference = offset + center

        for category, position, size, index, scale in parts:
            vol = float(np.prod(size))
            component = PhysicalComponent(
                    category=category,
                    position=staging.scale * position + offset,
                    extents=staging.scale * size,
                    mass=0.0, drag=0.0,
                    node_index=index,
                    scale=staging.scale * scale)

            match category:
                case ComponentCategory.STRUCTURE:
                    # base structure is near 17.7 lb
                    component.mass = vol / geometry.structure_density
                    component.drag = component.mass / geometry.structure_drag
                    self.totalStructureWeight += component.mass

                    if self.main_structure is None or \
                            np.linalg.norm(component.position - reference) \
                            < np.linalg.norm(self.main_structure.position - reference):
                        self.main_structure = component

                case ComponentCategory.MOTOR_CW | ComponentCategory.MOTOR_CCW:
                    component.mass = vol / geometry.motor_density
                    component.drag = component.mass / geometry.motor_drag
                    component.max_thrust = geometry.motor_power \
                        + vol * geometry.motor_prop_stretch / geometry.motor_prop
                    relative = position - center
                    component.quadrant = classify_quadrant(relative[0], relative[2], tolerance)
                    self.totalMotorWeight += component.mass

                case ComponentCategory.FOIL:
                    # about 2 lb per foot
                    component.mass = vol / geometry.foil_density
                    component.drag = component.mass / geometry.foil_drag
                    self.totalFoilWeight += component.mass

                case ComponentCategory.CONNECTOR:
                    component.mass = 0.0

            self.place(component)
            self.components.append(component)

        if self.main_structure is None:
            raise NoStructure("design has no structure component")

        self.main_structure_position = self.main_structure.position.copy()
        if self.design.payload_capacity > 0:
            self.main_structure.mass += self.design.payload_capacity

        self.connect()
        logger.debug("Vehicle built: %d components, structure %.2f, motors %.2f, foils %.2f",
                     len(self.components), self.totalStructureWeight,
                     self.totalMotorWeight, self.totalFoilWeight)

    def place(self, component: PhysicalComponent) -> None:
        if self.placer is None:
            return
        rotation = COMPONENT_ORIENTATION.get(component.category, Rotation.identity())
        component.handle = self.placer.place(component.category, component.position.copy(),
                                             tuple(rotation.as_quat()), component.scale)

    def clear(self) -> None:
        """Removes every placed component, the next build starts empty"""
        if self.placer is not None:
            for component in self.components:
                if component.handle is not None:
                    self.placer.remove(component.handle)
        self.components = []
        self.links = []
        self.main_structure = None
        self.main_structure_position = None
        self.clearTotals()

    def connect(self) -> None:
        """
        Connects every component to its closest already connected neighbour,
        starting from the main structure. Physics behaves better when joints
        are short, so each step picks the globally closest pair.
        """
        main = self.main_structure
        main.connected = True
        connected = [main]
        unconnected = [c for category in CONNECTION_ORDER for c in self.components
                       if c.category == category and c is not main]

        position_of = {id(c): i for i, c in enumerate(self.components)}
        counter = 0
        while unconnected and counter < self.config.bounds.connection_iterations:
            closest_unconnected = None
            closest_connected = None
            min_distance = math.inf

            for obj in unconnected:
                for obj_connect in connected:
                    distance = np.linalg.norm(obj.position - obj_connect.position)
                    if distance < min_distance and obj_connect.mass > 0:
                        closest_unconnected = obj
                        closest_connected = obj_connect
                        min_distance = distance

            unconnected.remove(closest_unconnected)
            connected.append(closest_unconnected)
            closest_unconnected.connected = True
            self.links.append((position_of[id(closest_unconnected)],
                               position_of[id(closest_connected)]))
            counter += 1

        if unconnected:
            msg = f"{len(unconnected)} components left unconnected"
            warnings.warn(msg, RuntimeSafetyCutoff)
            self.cutoffs.append(msg)

    def rigidBody(self) -> Tuple[float, np.ndarray, np.ndarray, float]:
        """Mass, centre of mass, inertia tensor (world axes) and linear drag of the connected set"""
        body = [c for c in self.components if c.connected and c.mass > 0]
        mass = sum(c.mass for c in body)
        com = sum(c.mass * c.position for c in body) / mass

        inertia = np.zeros((3, 3))
        for c in body:
            d = c.position - com
            inertia += box_inertia(c.mass, c.extents) \
                + c.mass * (np.dot(d, d) * np.eye(3) - np.outer(d, d))

        drag = sum(c.mass * c.drag for c in body) / mass
        return mass, com, inertia, drag

    @property
    def motorCount(self) -> int:
        return len(self.motors)

    def getTotalBatteryEnergy(self) -> float:
        return battery_energy(self.totalStructureWeight, self.config.scoring)

    def getCost(self) -> float:
        return vehicle_cost(self.totalStructureWeight, self.totalMotorWeight,
                            self.totalConnectionWeight, self.totalFoilWeight,
                            self.motorCount, self.config.scoring)
