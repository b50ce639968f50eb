import pytest

from pid_controller import PIDController


def test_zero_error_gives_zero_output():
    controller = PIDController()
    assert controller.output((2.0, 3.0, 2.0), 0.0, 0.02) == 0.0


def test_proportional_integral_derivative_terms():
    controller = PIDController()
    # integral 0.02, derivative 1/0.02
    assert controller.output((1.0, 1.0, 1.0), 1.0, 0.02) == pytest.approx(1.0 + 0.02 + 50.0)
    # steady error, derivative vanishes
    assert controller.output((1.0, 1.0, 1.0), 1.0, 0.02) == pytest.approx(1.0 + 0.04)


def test_integral_is_clamped():
    controller = PIDController()
    for _ in range(10000):
        controller.output((0.0, 1.0, 0.0), 100.0, 0.02)
    assert controller.integral_sum == 20.0
    assert controller.output((0.0, 0.5, 0.0), 100.0, 0.02) == pytest.approx(10.0)

    for _ in range(10000):
        controller.output((0.0, 1.0, 0.0), -100.0, 0.02)
    assert controller.integral_sum == -20.0


def test_controllers_keep_separate_history():
    first, second = PIDController(), PIDController()
    first.output((0.0, 0.0, 1.0), 5.0, 0.02)
    assert second.output((0.0, 0.0, 1.0), 5.0, 0.02) == pytest.approx(250.0)
