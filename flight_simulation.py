import logging
import math
from dataclasses import asdict
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.spatial.transform import Rotation

from config import OracleConfig
from models import (SimulationState, TerminationResult, TerminationStatus, TrajectorySample,
                    FlightPhase, Quadrant, ComponentCategory, PhysicalComponent,
                    EvaluationContext)
from pid_controller import PIDController
from vehicle_model import VehicleModel

logger = logging.getLogger(__name__)

# (pitch sign, roll sign) of the motors in each quadrant
QUADRANT_MIX = {
    Quadrant.FRONTRIGHT: (1, 1),
    Quadrant.FRONTLEFT: (1, -1),
    Quadrant.BACKRIGHT: (-1, 1),
    Quadrant.BACKLEFT: (-1, -1),
    Quadrant.FRONT: (1, 0),
    Quadrant.BACK: (-1, 0),
    Quadrant.RIGHT: (0, 1),
    Quadrant.LEFT: (0, -1),
}

# a foil only keeps its lift when the ray hits none of these first
SHADOWING_CATEGORIES = {ComponentCategory.FOIL, ComponentCategory.STRUCTURE}

BODY_UP = np.array([0.0, 1.0, 0.0])
BODY_FORWARD = np.array([0.0, 0.0, 1.0])


def wrap_angle(angle: float) -> float:
    """Angle in degrees wrapped to (-180, 180]"""
    angle = math.fmod(angle, 360.0)
    if angle > 180.0:
        angle -= 360.0
    elif angle <= -180.0:
        angle += 360.0
    return angle


def ray_box_distance(origin: np.ndarray, direction: np.ndarray,
                     center: np.ndarray, half: np.ndarray) -> Optional[float]:
    """Distance along the ray to an axis aligned box, None on a miss"""
    t_min, t_max = 0.0, math.inf
    for axis in range(3):
        lo = center[axis] - half[axis] - origin[axis]
        hi = center[axis] + half[axis] - origin[axis]
        if abs(direction[axis]) < 1e-12:
            if lo > 0 or hi < 0:
                return None
            continue
        t1, t2 = lo / direction[axis], hi / direction[axis]
        if t1 > t2:
            t1, t2 = t2, t1
        t_min = max(t_min, t1)
        t_max = min(t_max, t2)
        if t_min > t_max:
            return None
    return t_min


def sample_due(elapsed: float, interval: float, dt: float) -> bool:
    k = math.floor(elapsed / interval + 1e-9)
    return elapsed - k * interval <= dt + 1e-9


class FlightSimulator():
    """
    Flies a built vehicle as one rigid body with a fixed timestep.

    The vehicle first hovers until it is steady, then pitches forward and
    flies until the battery is empty or it leaves the allowed envelope.
    Offsets of the components are kept in the staging frame, the frame the
    vehicle was built in, so the body rotation is identity at the start.
    """
    def __init__(self, vehicle: VehicleModel, context: EvaluationContext,
                 config: Optional[OracleConfig] = None, logStates: bool = False):
        self.vehicle = vehicle
        self.context = context
        self.config = config if config is not None else vehicle.config
        self.logStates = logStates

        self.dt = self.config.constants.dt
        self.gains = self.config.gains
        self.bounds = self.config.bounds
        self.scoring = self.config.scoring

        self.setAuxVals()
        self.clearState()

    def setAuxVals(self) -> None:
        self.initial_rotation = Rotation.from_euler(
            'y', self.gains.reference_heading, degrees=True)
        self.battery_energy = self.vehicle.getTotalBatteryEnergy()
        self.cost = self.vehicle.getCost()

        main = self.vehicle.main_structure
        if main is None:
            self.mass = 0.0
            return

        self.mass, self.com0, self.inertia, self.linear_drag = self.vehicle.rigidBody()
        self.inertia_inv = np.linalg.inv(self.inertia)

        self.body_components: List[PhysicalComponent] = \
            [c for c in self.vehicle.components if c.connected]
        self.offsets = np.array([c.position - self.com0 for c in self.body_components])
        self.main_offset = main.position - self.com0

        self.motors = [m for m in self.vehicle.motors if m.connected]
        self.foils = [f for f in self.vehicle.foils if f.connected]
        self.index_of = {id(c): i for i, c in enumerate(self.body_components)}

    def clearState(self) -> None:
        self.state = SimulationState(orientation=self.initial_rotation.as_quat())
        if self.vehicle.main_structure is not None:
            self.state.position = self.com0.copy()

        self.pitch_controller = PIDController(self.gains.integral_limit)
        self.roll_controller = PIDController(self.gains.integral_limit)
        self.yaw_controller = PIDController(self.gains.integral_limit)
        self.throttle_controller = PIDController(self.gains.integral_limit)

        self.trajectory: List[TrajectorySample] = []
        self.stateLog: List[dict] = []
        self.force = np.zeros(3)
        self.torque = np.zeros(3)

    def logState(self) -> None:
        entry = {k: v.tolist() if isinstance(v, np.ndarray) else v
                 for k, v in asdict(self.state).items()}
        entry["phase"] = self.state.phase.name
        entry["terminal"] = None if self.state.terminal is None \
            else self.state.terminal.status.value
        self.stateLog.append(entry)

    # kinematics of the body
    def frame(self) -> np.ndarray:
        """Rotation from the staging frame to the world"""
        rotation = Rotation.from_quat(self.state.orientation) * self.initial_rotation.inv()
        return rotation.as_matrix()

    def worldPositions(self, frame: np.ndarray) -> np.ndarray:
        return self.state.position + self.offsets @ frame.T

    def mainPosition(self, frame: Optional[np.ndarray] = None) -> np.ndarray:
        if frame is None:
            frame = self.frame()
        return self.state.position + frame @ self.main_offset

    def mainVelocity(self, frame: Optional[np.ndarray] = None) -> np.ndarray:
        if frame is None:
            frame = self.frame()
        return self.state.velocity + np.cross(self.state.angular_velocity,
                                              frame @ self.main_offset)

    def attitude(self) -> Tuple[float, float, float]:
        """Yaw, pitch and roll of the main structure in degrees"""
        yaw, pitch, roll = Rotation.from_quat(self.state.orientation).as_euler('YXZ', degrees=True)
        return yaw, pitch, roll

    def addForceAtPosition(self, force: np.ndarray, position: np.ndarray) -> None:
        self.force += force
        self.torque += np.cross(position - self.state.position, force)

    def tick(self) -> Optional[TerminationResult]:
        """Advances the simulation by one timestep, returns the result once terminal"""
        if self.state.terminal is not None:
            return self.state.terminal

        if self.vehicle.main_structure is None:
            self.state.terminal = TerminationResult(TerminationStatus.FAILURE, -1, -1, -1)
            return self.state.terminal

        self.state.elapsed_time += self.dt
        self.force = np.zeros(3)
        self.torque = np.zeros(3)

        frame = self.frame()
        self.updateThrottle(frame)
        self.addMotorAndFoilForce(frame)

        if sample_due(self.state.elapsed_time, self.scoring.sample_interval, self.dt):
            self.sampleTrajectory(frame)

        if self.state.terminal is None:
            self.integrate()

        if self.logStates:
            self.logState()

        return self.state.terminal

    def run(self, max_ticks: Optional[int] = None) -> Optional[TerminationResult]:
        ticks = 0
        while self.state.terminal is None:
            if max_ticks is not None and ticks >= max_ticks:
                break
            self.tick()
            ticks += 1
        return self.state.terminal

    def updateThrottle(self, frame: np.ndarray) -> None:
        vertical = self.mainVelocity(frame)[1]
        output = self.throttle_controller.output(self.gains.throttle, vertical, self.dt)
        self.state.throttle = min(max(self.state.throttle - output, 0.0), self.gains.throttle_max)

    def checkHover(self, velocity: np.ndarray) -> None:
        """Switches to forward flight once the vehicle hovers steadily"""
        if self.state.phase != FlightPhase.HOVERING:
            return

        omega = self.state.angular_velocity
        v_limit = self.bounds.hover_velocity
        w_limit = self.bounds.hover_angular_velocity
        if (abs(velocity[1]) < v_limit and abs(omega[1]) < w_limit
                and abs(omega[0]) < w_limit and abs(velocity[0]) < v_limit
                and abs(velocity[2]) < v_limit and self.state.steps > self.bounds.hover_ticks):
            self.state.phase = FlightPhase.FORWARD_FLIGHT
            logger.debug("Forward flight from t=%.2f", self.state.elapsed_time)

    def motorCommands(self) -> List[Tuple[PhysicalComponent, float]]:
        yaw, pitch, roll = self.attitude()

        match self.state.phase:
            case FlightPhase.HOVERING:
                pitch_target = self.gains.hover_pitch
            case FlightPhase.FORWARD_FLIGHT:
                pitch_target = self.gains.forward_pitch

        pitch_error = wrap_angle(pitch - pitch_target)
        roll_error = -wrap_angle(roll)
        yaw_error = wrap_angle(yaw - self.gains.reference_heading)

        pitch_gains = self.gains.pitch
        if self.state.throttle > self.gains.pitch_adapt_throttle:
            pitch_gains = tuple(2 * k for k in pitch_gains)

        pitch_out = self.pitch_controller.output(pitch_gains, pitch_error, self.dt)
        roll_out = self.roll_controller.output(self.gains.roll, roll_error, self.dt)
        yaw_out = self.yaw_controller.output(self.gains.yaw, yaw_error, self.dt)

        commands = []
        for motor in self.motors:
            if motor.quadrant is None:
                continue
            pitch_sign, roll_sign = QUADRANT_MIX[motor.quadrant]
            yaw_increment = -yaw_out if motor.category == ComponentCategory.MOTOR_CCW else yaw_out
            commands.append((motor, self.state.throttle + pitch_sign * pitch_out
                             + roll_sign * roll_out + yaw_increment))
        return commands

    def isObstructed(self, foil: PhysicalComponent) -> bool:
        """Casts a ray forward from the foil, True if the first hit shadows the foil"""
        offset = self.offsets[self.index_of[id(foil)]]
        margin = 0.75 * foil.extents[2] / 2 + self.scoring.ray_clearance
        # cast in the staging frame, where every box is axis aligned
        direction = self.initial_rotation.apply(BODY_FORWARD)
        origin = offset + margin * direction

        hit, closest = None, math.inf
        for component, center in zip(self.body_components, self.offsets):
            if component is foil:
                continue
            distance = ray_box_distance(origin, direction, center, component.extents / 2)
            if distance is not None and distance < closest:
                hit, closest = component, distance

        if hit is None:
            return False
        return hit.category not in SHADOWING_CATEGORIES

    def foilLift(self, foil: PhysicalComponent, velocity: np.ndarray) -> float:
        planar_speed = math.hypot(velocity[0], velocity[2])
        speed = np.linalg.norm(velocity)
        if speed == 0:
            return 0.0

        forward = Rotation.from_quat(self.state.orientation).apply(BODY_FORWARD)
        alignment = max(0.0, float(np.dot(forward, velocity / speed)))
        area = foil.extents[0] * foil.extents[2]
        return alignment * self.scoring.lift_coefficient * planar_speed**2 * area

    def addMotorAndFoilForce(self, frame: np.ndarray) -> None:
        self.state.steps += 1
        velocity = self.mainVelocity(frame)
        self.checkHover(velocity)

        commands = self.motorCommands()
        positions = self.worldPositions(frame)

        for foil in self.foils:
            lift = self.foilLift(foil, velocity)
            if lift > 0 and not self.isObstructed(foil):
                self.addForceAtPosition(np.array([0.0, lift, 0.0]),
                                        positions[self.index_of[id(foil)]])

        up = frame @ BODY_UP
        if self.state.energy_used < self.battery_energy:
            for motor, command in commands:
                applied = min(command, motor.max_thrust)
                self.state.energy_used += applied / self.scoring.energy_per_thrust
                self.addForceAtPosition(applied * up, positions[self.index_of[id(motor)]])
                # reaction torque of the propeller
                if motor.category == ComponentCategory.MOTOR_CW:
                    self.torque -= applied * up
                else:
                    self.torque += applied * up
        elif self.state.phase == FlightPhase.FORWARD_FLIGHT:
            self.terminate(TerminationStatus.SUCCESS, frame)
        else:
            self.terminate(TerminationStatus.COULD_NOT_STABILIZE, frame)

        self.checkBoundaries(frame, positions)

    def checkBoundaries(self, frame: np.ndarray, positions: np.ndarray) -> None:
        main_position = self.mainPosition(frame)
        hit_boundary = False

        if main_position[1] <= self.config.staging.boundary_height:
            self.terminate(TerminationStatus.HIT_BOUNDARY, frame)
            self.context.collision = True
            hit_boundary = True

        # runaway vehicles spend the rest of their battery at once
        if abs(main_position[0]) > self.bounds.max_x or abs(main_position[2]) > self.bounds.max_z \
                or self.state.steps > self.bounds.max_steps:
            self.state.energy_used = math.inf

        if main_position[1] > self.bounds.max_altitude:
            self.terminate(TerminationStatus.COULD_NOT_STABILIZE, frame)

        self.detectContact(frame, positions)
        if self.context.collision and not hit_boundary:
            if self.state.phase == FlightPhase.FORWARD_FLIGHT:
                self.terminate(TerminationStatus.HIT_BOUNDARY, frame)
            else:
                self.terminate(TerminationStatus.COULD_NOT_STABILIZE, frame)

    def detectContact(self, frame: np.ndarray, positions: np.ndarray) -> None:
        """Raises the collision flag when any part of the body touches the boundary plane"""
        for component, position in zip(self.body_components, positions):
            half_height = float(np.abs(frame[1]) @ (component.extents / 2))
            if position[1] - half_height <= self.config.staging.boundary_height:
                self.context.collision = True
                return

    def terminate(self, status: TerminationStatus, frame: np.ndarray) -> None:
        self.state.terminal = TerminationResult(status, self.getDistance(frame),
                                                self.getVelocity(frame), self.cost)
        logger.debug("Terminated with %s after %d steps", status.value, self.state.steps)

    def getDistance(self, frame: Optional[np.ndarray] = None) -> float:
        if self.state.phase == FlightPhase.FORWARD_FLIGHT:
            distance = np.linalg.norm(self.mainPosition(frame)
                                      - self.vehicle.main_structure_position)
        else:
            distance = -abs(self.mainVelocity(frame)[1])
        return float(distance) / self.scoring.distance_divisor

    def getVelocity(self, frame: Optional[np.ndarray] = None) -> float:
        velocity = self.mainVelocity(frame)
        return self.scoring.velocity_factor * math.hypot(velocity[0], velocity[2])

    def sampleTrajectory(self, frame: np.ndarray) -> None:
        x, y, z = self.mainPosition(frame)
        qx, qy, qz, qw = self.state.orientation
        self.trajectory.append(TrajectorySample(self.state.elapsed_time, float(x), float(y),
                                                float(z), float(qx), float(qy), float(qz),
                                                float(qw)))

    def integrate(self) -> None:
        """Semi-implicit Euler step of the rigid body"""
        dt = self.dt
        state = self.state
        constants = self.config.constants

        acceleration = self.force / self.mass - np.array([0.0, constants.g, 0.0])
        state.velocity = (state.velocity + acceleration * dt) \
            * max(0.0, 1.0 - self.linear_drag * dt)
        state.position = state.position + state.velocity * dt

        frame = self.frame()
        inertia = frame @ self.inertia @ frame.T
        inertia_inv = frame @ self.inertia_inv @ frame.T
        omega = state.angular_velocity
        angular_acceleration = inertia_inv @ (self.torque - np.cross(omega, inertia @ omega))
        omega = (omega + angular_acceleration * dt) * max(0.0, 1.0 - constants.angular_drag * dt)

        speed = np.linalg.norm(omega)
        if speed > constants.max_angular_speed:
            omega = omega * constants.max_angular_speed / speed
        state.angular_velocity = omega

        rotation = Rotation.from_rotvec(omega * dt) * Rotation.from_quat(state.orientation)
        state.orientation = rotation.as_quat()

    def trajectoryFrame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(sample) for sample in self.trajectory],
                            columns=["time", "x", "y", "z", "qx", "qy", "qz", "qw"])

    def stateFrame(self) -> pd.DataFrame:
        return pd.DataFrame(self.stateLog)
