""" All the configs for the constants, presets and bounds of the evaluation. """

from dataclasses import dataclass, field
from typing import Tuple


@dataclass
class PhysicalConstants:
    g: float = 9.81
    dt: float = 0.02            # fixed simulation timestep (s)
    angular_drag: float = 0.05
    max_angular_speed: float = 7.0  # rad/s


@dataclass
class StagingPresets:
    """Where and how large the flying copy of a design is built"""
    scale: float = 2.0
    staging_height: float = 1000.0
    staging_depth: float = 2000.0
    boundary_height: float = 950.0   # the reference (test stand) plane

    # grid spacing of the designer, one connector length
    connection_length: float = 10.0


@dataclass
class ControllerGains:
    """P, I, D gains for each control loop"""
    pitch: Tuple[float, float, float] = (2.0, 3.0, 2.0)
    roll: Tuple[float, float, float] = (2.0, 0.2, 0.5)
    yaw: Tuple[float, float, float] = (1.0, 0.0, 0.0)
    throttle: Tuple[float, float, float] = (0.5, 0.2, 0.2)

    integral_limit: float = 20.0
    throttle_max: float = 200.0

    # pitch gains are doubled above this throttle
    pitch_adapt_throttle: float = 100.0

    hover_pitch: float = 0.0
    forward_pitch: float = 16.0
    reference_heading: float = 45.0


@dataclass
class ComponentGeometry:
    """Unscaled bounding box (x, y, z) of each component in the designer"""
    structure: Tuple[float, float, float] = (3.9, 2.0, 3.9)
    motor: Tuple[float, float, float] = (2.0, 0.7, 2.0)
    foil: Tuple[float, float, float] = (8.0, 0.8, 4.0)
    connector_width: float = 1.0

    # one size step grows or shrinks a component by this much
    size_step: float = 0.25
    min_scale: float = 0.8

    # volume divisors of the mass model
    structure_density: float = 20.0
    motor_density: float = 10.0
    foil_density: float = 71.0

    # drag is a fraction of the mass
    structure_drag: float = 100.0
    motor_drag: float = 400.0
    foil_drag: float = 400.0

    motor_power: float = 10.0
    motor_prop: float = 0.075
    motor_prop_stretch: float = 1.4


@dataclass
class SafetyBounds:
    """Iteration and run-time limits of the evaluation"""
    assembly_steps: int = 100
    sizing_steps: int = 100
    connection_iterations: int = 100

    max_steps: int = 40000
    max_x: float = 2000.0
    max_z: float = 4000.0
    max_altitude: float = 1200.0

    hover_ticks: int = 100
    hover_velocity: float = 0.10
    hover_angular_velocity: float = 0.05

    quadrant_tolerance: float = 0.01


@dataclass
class ScoringConstants:
    """Scaling of the raw simulation to the reported units.

    The base design is about 17.7 lb of structure with a 570 Wh battery,
    flies at roughly 20 mph and covers about 10 miles.
    """
    baseline_structure_weight: float = 17.7
    baseline_battery_energy: float = 570.0
    energy_per_thrust: float = 500.0
    distance_divisor: float = 38.0
    velocity_factor: float = 0.5418

    structure_cost: float = 140.0
    foil_cost: float = 40.0
    controller_cost: float = 200.0
    motor_controller_cost: float = 50.0

    lift_coefficient: float = 0.0005
    # the foil ray starts this far ahead of the foil's leading edge
    ray_clearance: float = 5.0
    sample_interval: float = 0.2


@dataclass
class OracleConfig:
    constants: PhysicalConstants = field(default_factory=PhysicalConstants)
    staging: StagingPresets = field(default_factory=StagingPresets)
    gains: ControllerGains = field(default_factory=ControllerGains)
    geometry: ComponentGeometry = field(default_factory=ComponentGeometry)
    bounds: SafetyBounds = field(default_factory=SafetyBounds)
    scoring: ScoringConstants = field(default_factory=ScoringConstants)
