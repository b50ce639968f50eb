import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from assembly import assemble
from config import OracleConfig, SafetyBounds, StagingPresets
from flight_simulation import FlightSimulator, wrap_angle, ray_box_distance, sample_due
from grammar import decode
from models import (EvaluationContext, TerminationStatus, FlightPhase, ComponentCategory)
from vehicle_model import VehicleModel

BASE_DESIGN = "*aMM0+++++*bNM2+++*cMN1+++*dLM2+++*eML1+++^ab^ac^ad^ae,5,3"
FOIL_DESIGN = "*aMM0+++++*bNM3^ab,0,0"
# a motor sits right in front of the foil
SHADOWED_FOIL_DESIGN = "*aMM0+++++*bNM3*cOM4*dON1^ab^bc^cd,0,0"


def simulator_for(design_string, config=None):
    config = config if config is not None else OracleConfig()
    context = EvaluationContext()
    design = decode(design_string)
    vehicle = VehicleModel(design, assemble(design, context, config.bounds), config)
    vehicle.build()
    return FlightSimulator(vehicle, context, config), context


@pytest.mark.parametrize("angle,wrapped", [
    (0.0, 0.0), (190.0, -170.0), (-190.0, 170.0), (180.0, 180.0),
    (-180.0, 180.0), (540.0, 180.0), (725.0, 5.0),
])
def test_wrap_angle(angle, wrapped):
    assert wrap_angle(angle) == pytest.approx(wrapped)


def test_ray_box_distance():
    origin = np.zeros(3)
    forward = np.array([0.0, 0.0, 1.0])
    half = np.ones(3)

    assert ray_box_distance(origin, forward, np.array([0.0, 0.0, 10.0]), half) == pytest.approx(9.0)
    assert ray_box_distance(origin, forward, np.array([5.0, 0.0, 10.0]), half) is None
    assert ray_box_distance(origin, forward, np.array([0.0, 0.0, -10.0]), half) is None


def test_sample_due():
    assert sample_due(0.02, 0.2, 0.02)
    assert not sample_due(0.1, 0.2, 0.02)
    assert sample_due(0.2, 0.2, 0.02)
    assert sample_due(0.4 - 1e-12, 0.2, 0.02)


def test_missing_structure_fails():
    design = decode("*aMM1,0,0")
    context = EvaluationContext()
    vehicle = VehicleModel(design, assemble(design, context))
    simulator = FlightSimulator(vehicle, context)

    result = simulator.tick()
    assert result.status == TerminationStatus.FAILURE
    assert (result.distance, result.velocity, result.cost) == (-1, -1, -1)


def test_initial_state():
    simulator, _ = simulator_for(BASE_DESIGN)
    yaw, pitch, roll = simulator.attitude()

    assert yaw == pytest.approx(45.0)
    assert pitch == pytest.approx(0.0, abs=1e-9)
    assert roll == pytest.approx(0.0, abs=1e-9)
    assert np.allclose(simulator.mainPosition(), [0.0, 1000.0, 2000.0])
    assert simulator.state.phase == FlightPhase.HOVERING


def test_throttle_catches_the_fall():
    simulator, context = simulator_for(BASE_DESIGN)
    assert simulator.run(max_ticks=50) is None

    assert simulator.state.steps == 50
    assert simulator.state.throttle > 0
    assert simulator.state.energy_used > 0
    assert simulator.mainPosition()[1] > 990.0
    assert not context.collision


def test_trajectory_samples():
    simulator, _ = simulator_for(BASE_DESIGN)
    simulator.run(max_ticks=100)

    times = [s.time for s in simulator.trajectory]
    assert times
    assert times == sorted(times)
    assert times[0] == pytest.approx(0.02)

    frame = simulator.trajectoryFrame()
    assert list(frame.columns) == ["time", "x", "y", "z", "qx", "qy", "qz", "qw"]
    assert len(frame) == len(times)


def test_state_log():
    simulator, _ = simulator_for(BASE_DESIGN)
    simulator.logStates = True
    simulator.run(max_ticks=10)

    log = simulator.stateFrame()
    assert len(log) == 10
    assert set(log["phase"]) == {"HOVERING"}


def test_exhausted_battery_while_hovering():
    simulator, _ = simulator_for(BASE_DESIGN)
    simulator.battery_energy = 0.0

    result = simulator.tick()
    assert result.status == TerminationStatus.COULD_NOT_STABILIZE
    assert result.cost == pytest.approx(simulator.vehicle.getCost())


def test_step_limit_forces_exhaustion():
    config = OracleConfig(bounds=SafetyBounds(max_steps=5))
    simulator, _ = simulator_for(BASE_DESIGN, config)

    result = simulator.run()
    assert result.status == TerminationStatus.COULD_NOT_STABILIZE
    assert simulator.state.steps == 7


def test_altitude_limit():
    config = OracleConfig(bounds=SafetyBounds(max_altitude=900.0))
    simulator, _ = simulator_for(BASE_DESIGN, config)

    assert simulator.tick().status == TerminationStatus.COULD_NOT_STABILIZE


def test_main_structure_on_boundary():
    config = OracleConfig(staging=StagingPresets(boundary_height=1000.5))
    simulator, context = simulator_for(BASE_DESIGN, config)

    assert simulator.tick().status == TerminationStatus.HIT_BOUNDARY
    assert context.collision


def test_contact_while_hovering():
    # the structure's underside already touches the plane
    config = OracleConfig(staging=StagingPresets(boundary_height=997.0))
    simulator, context = simulator_for(BASE_DESIGN, config)

    assert simulator.tick().status == TerminationStatus.COULD_NOT_STABILIZE
    assert context.collision


def test_contact_in_forward_flight():
    config = OracleConfig(staging=StagingPresets(boundary_height=997.0))
    simulator, _ = simulator_for(BASE_DESIGN, config)
    simulator.state.phase = FlightPhase.FORWARD_FLIGHT

    assert simulator.tick().status == TerminationStatus.HIT_BOUNDARY


def test_terminal_state_is_kept():
    config = OracleConfig(bounds=SafetyBounds(max_altitude=900.0))
    simulator, _ = simulator_for(BASE_DESIGN, config)
    first = simulator.tick()

    assert simulator.tick() is first
    assert simulator.state.steps == 1


def test_foil_lift():
    simulator, _ = simulator_for(FOIL_DESIGN)
    foil = simulator.foils[0]
    forward = Rotation.from_euler('y', 45, degrees=True).apply([0.0, 0.0, 1.0])

    area = foil.extents[0] * foil.extents[2]
    assert simulator.foilLift(foil, 10 * forward) == pytest.approx(0.0005 * 100 * area)
    assert simulator.foilLift(foil, -10 * forward) == 0.0
    assert simulator.foilLift(foil, np.zeros(3)) == 0.0
    # climbing straight up has no planar speed
    assert simulator.foilLift(foil, np.array([0.0, 5.0, 0.0])) == 0.0


def test_foil_shadowing():
    simulator, _ = simulator_for(FOIL_DESIGN)
    assert not simulator.isObstructed(simulator.foils[0])

    simulator, _ = simulator_for(SHADOWED_FOIL_DESIGN)
    assert [m.category for m in simulator.motors] == [ComponentCategory.MOTOR_CW]
    assert simulator.isObstructed(simulator.foils[0])


def test_base_design_flight_terminates():
    simulator, context = simulator_for(BASE_DESIGN)
    result = simulator.run()

    assert result.status in (TerminationStatus.SUCCESS, TerminationStatus.HIT_BOUNDARY,
                             TerminationStatus.COULD_NOT_STABILIZE)
    assert result.cost == pytest.approx(simulator.vehicle.getCost())
    if result.status == TerminationStatus.HIT_BOUNDARY:
        assert context.collision


class FixedOutput:
    def __init__(self, value=0.0):
        self.value = value
        self.gains = []

    def output(self, gains, error, dt):
        self.gains.append(gains)
        return self.value


def commands_with(pitch=0.0, roll=0.0, yaw=0.0, throttle=50.0):
    simulator, _ = simulator_for(BASE_DESIGN)
    simulator.pitch_controller = FixedOutput(pitch)
    simulator.roll_controller = FixedOutput(roll)
    simulator.yaw_controller = FixedOutput(yaw)
    simulator.state.throttle = throttle
    return simulator, {m.node_index: value for m, value in simulator.motorCommands()}


def test_hover_switches_to_forward_flight():
    simulator, _ = simulator_for(BASE_DESIGN)
    simulator.state.steps = 100
    simulator.checkHover(np.zeros(3))
    assert simulator.state.phase == FlightPhase.HOVERING

    simulator.state.steps = 101
    simulator.checkHover(np.zeros(3))
    assert simulator.state.phase == FlightPhase.FORWARD_FLIGHT


@pytest.mark.parametrize("velocity,angular_velocity", [
    ([0.0, 0.2, 0.0], [0.0, 0.0, 0.0]),
    ([0.2, 0.0, 0.0], [0.0, 0.0, 0.0]),
    ([0.0, 0.0, -0.2], [0.0, 0.0, 0.0]),
    ([0.0, 0.0, 0.0], [0.1, 0.0, 0.0]),
    ([0.0, 0.0, 0.0], [0.0, -0.1, 0.0]),
])
def test_unsteady_vehicle_keeps_hovering(velocity, angular_velocity):
    simulator, _ = simulator_for(BASE_DESIGN)
    simulator.state.steps = 500
    simulator.state.angular_velocity = np.array(angular_velocity)

    simulator.checkHover(np.array(velocity))
    assert simulator.state.phase == FlightPhase.HOVERING


def test_spin_about_z_does_not_block_forward_flight():
    simulator, _ = simulator_for(BASE_DESIGN)
    simulator.state.steps = 500
    simulator.state.angular_velocity = np.array([0.0, 0.0, 1.0])

    simulator.checkHover(np.zeros(3))
    assert simulator.state.phase == FlightPhase.FORWARD_FLIGHT


# b front right ccw, c front left cw, d back left ccw, e back right cw
@pytest.mark.parametrize("outputs,expected", [
    (dict(pitch=1.0), {1: 51.0, 2: 51.0, 3: 49.0, 4: 49.0}),
    (dict(roll=1.0), {1: 51.0, 2: 49.0, 3: 49.0, 4: 51.0}),
    (dict(yaw=1.0), {1: 49.0, 2: 51.0, 3: 49.0, 4: 51.0}),
])
def test_motor_mix(outputs, expected):
    _, commands = commands_with(**outputs)
    assert commands == pytest.approx(expected)


def test_pitch_gains_double_at_high_throttle():
    simulator, _ = commands_with(throttle=101.0)
    assert simulator.pitch_controller.gains == [(4.0, 6.0, 4.0)]

    simulator, _ = commands_with(throttle=99.0)
    assert simulator.pitch_controller.gains == [(2.0, 3.0, 2.0)]
    assert simulator.roll_controller.gains == [simulator.gains.roll]
