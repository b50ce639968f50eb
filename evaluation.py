"""Design string in, flight verdict out"""
import logging
import os
from dataclasses import asdict
from typing import List, Optional

import matplotlib.pyplot as plt
import pandas as pd

from assembly import assemble
from config import OracleConfig
from flight_simulation import FlightSimulator
from grammar import decode, parse_capacity, design_hash, text_hash, format_number
from models import (EvaluationResult, EvaluationContext, TerminationStatus, DesignError)
from vehicle_model import VehicleModel

logger = logging.getLogger(__name__)

CUTOFF_SEPARATOR = ";"


class EvaluationOracle():
    def __init__(self, config: Optional[OracleConfig] = None, placer=None):
        """
        Args:
            config: evaluation settings, defaults for every field when None
            placer: optional rendering collaborator handed to the vehicle model
        """
        self.config = config if config is not None else OracleConfig()
        self.placer = placer

    def evaluate(self, design_string: str, return_trajectory: bool = False) -> EvaluationResult:
        """
        Decodes, assembles, builds and flies one design. Designs that cannot
        be built come back as Failure with -1 for distance, velocity and cost.
        """
        context = EvaluationContext()
        capacity = parse_capacity(design_string)
        cutoffs: List[str] = []
        vehicle = None

        try:
            design = decode(design_string)
            assembly = assemble(design, context, self.config.bounds)
            cutoffs += assembly.cutoffs

            vehicle = VehicleModel(design, assembly, self.config, self.placer)
            vehicle.build()
        except DesignError as e:
            logger.info("Design %r rejected: %s", design_string, e)
            if vehicle is not None:
                cutoffs += vehicle.cutoffs
                vehicle.clear()
            return EvaluationResult.failure(capacity, cutoffs)

        cutoffs += vehicle.cutoffs
        simulator = FlightSimulator(vehicle, context, self.config)
        terminal = simulator.run()
        vehicle.clear()

        logger.info("%s: %s after %.2f s", design_string, terminal.status.value,
                    simulator.state.elapsed_time)

        return EvaluationResult(terminal.status, terminal.distance, terminal.velocity,
                                terminal.cost, payload_capacity=capacity,
                                trajectory=simulator.trajectory if return_trajectory else None,
                                cutoffs=cutoffs)


def evaluate(design_string: str, return_trajectory: bool = False,
             config: Optional[OracleConfig] = None) -> EvaluationResult:
    return EvaluationOracle(config).evaluate(design_string, return_trajectory)


def format_result(result: EvaluationResult) -> str:
    """'<status> <distance> <velocity> <cost>'"""
    return " ".join([result.status.value, format_number(result.distance),
                     format_number(result.velocity), format_number(result.cost)])


def format_trajectory(result: EvaluationResult) -> List[str]:
    lines = []
    for sample in result.trajectory or []:
        lines.append(" ".join(format_number(v) for v in asdict(sample).values()))
    return lines


def resultHash(design_string: str) -> int:
    try:
        return design_hash(decode(design_string))
    except DesignError:
        return text_hash(design_string)


def writeEvaluationResults(design_string: str, result: EvaluationResult,
                           csvPath: str = "data/results.csv") -> None:
    new_df = pd.DataFrame([{
        "design": design_string,
        "status": result.status.value,
        "distance": result.distance,
        "velocity": result.velocity,
        "cost": result.cost,
        "payload_capacity": result.payload_capacity,
        "cutoffs": CUTOFF_SEPARATOR.join(result.cutoffs),
        }])
    new_df['hash'] = resultHash(design_string)

    if os.path.exists(csvPath):
        df = pd.read_csv(csvPath, sep=',', encoding='utf-8')
        df = pd.concat([df, new_df]).drop_duplicates(["hash"], keep='last')
    else:
        directory = os.path.dirname(csvPath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        df = new_df

    df.to_csv(csvPath, index=False)


def loadEvaluationResults(hashValue: int, csvPath: str = "data/results.csv") -> EvaluationResult:
    df = pd.read_csv(csvPath, sep=',', encoding='utf-8')
    records = df.loc[df['hash'] == hashValue].to_dict('records')
    if not records:
        raise KeyError(f"no result with hash {hashValue} in {csvPath}")
    record = records[0]

    cutoffs = record["cutoffs"]
    return EvaluationResult(TerminationStatus(record["status"]),
                            float(record["distance"]), float(record["velocity"]),
                            float(record["cost"]),
                            payload_capacity=float(record["payload_capacity"]),
                            cutoffs=cutoffs.split(CUTOFF_SEPARATOR)
                            if isinstance(cutoffs, str) and cutoffs else [])


def writeTrajectory(result: EvaluationResult, csvPath: str = "data/trajectory.csv") -> None:
    df = pd.DataFrame([asdict(sample) for sample in result.trajectory or []],
                      columns=["time", "x", "y", "z", "qx", "qy", "qz", "qw"])
    df.to_csv(csvPath, index=False)


def plotTrajectory(result: EvaluationResult, path: Optional[str] = None) -> None:
    """Altitude over time and the ground track, saved to path or shown"""
    samples = result.trajectory or []
    time = [s.time for s in samples]

    fig, (ax_altitude, ax_track) = plt.subplots(1, 2, figsize=(12, 5))

    ax_altitude.plot(time, [s.y for s in samples], color='blue')
    ax_altitude.set_title('Altitude')
    ax_altitude.set_xlabel('Time (s)')
    ax_altitude.set_ylabel('y')
    ax_altitude.grid(True, linestyle='--', alpha=0.6)

    ax_track.plot([s.x for s in samples], [s.z for s in samples], color='red')
    ax_track.set_title(f'Ground track ({result.status.value})')
    ax_track.set_xlabel('x')
    ax_track.set_ylabel('z')
    ax_track.grid(True, linestyle='--', alpha=0.6)

    fig.tight_layout()
    if path is None:
        plt.show()
    else:
        fig.savefig(path)
    plt.close(fig)
