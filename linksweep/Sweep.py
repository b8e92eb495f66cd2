"""
Distance sweep: run one link scenario per distance, moving the nodes apart
until the UDP server stops receiving anything.

Every iteration appends one row to the result file of the model and flushes
it, so an interrupted sweep keeps every row it finished.
"""
import os
import math
import logging
from typing import NamedTuple, Optional

from tabulate import tabulate

from .config import settings as settings_from_file
from .errors import ConfigurationError
from .Network import LinkSimulation
from .utils import server_throughput_mbps, flow_throughput_mbps, format_value

SOURCE = 0
SINK = 1


class SweepState(NamedTuple):
    distance: float
    rss: Optional[float] = None
    throughput: Optional[float] = None
    iteration: int = 0


class FlowSample(NamedTuple):
    source: str
    destination: str
    tx_bytes: int
    rx_bytes: int
    throughput: float


class ResultRow(NamedTuple):
    distance: float
    rss: Optional[float]
    throughput: float

    def __str__(self):
        return ",".join(format_value(v) for v in self)


class SignalProbe:
    """Last signal level reported by a PHY sniffer; one slot, no history."""

    def __init__(self):
        self.value = None

    def record(self, signal_dbm, noise_dbm=None):
        self.value = signal_dbm

    def clear(self):
        self.value = None

    def read(self):
        return self.value


def link_collapsed(throughput):
    return throughput == 0


def result_file_name(spec, settings=settings_from_file):
    return f"{settings.RESULT_FILE_PREFIX}{spec.name}.csv"


class ResultFile:
    COLUMNS = "distance [m],rss [dBm],throughput [Mbps]"

    def __init__(self, path, model_name, duration, interval):
        self.path = path
        self.model_name = model_name
        self.duration = duration
        self.interval = interval
        self.header_written = False

    def write_header(self):
        with open(self.path, "w") as f:
            f.write("Simulation Time,Packet Interval\n")
            f.write(f"model: {self.model_name}\n")
            f.write(f"{format_value(self.duration)},{format_value(self.interval)}\n")
            f.write(f"{self.COLUMNS}\n")
        self.header_written = True

    def append(self, row: ResultRow):
        if not self.header_written:
            raise RuntimeError(f"Header of {self.path} has not been written")
        with open(self.path, "a") as f:
            f.write(f"{row}\n")
            f.flush()
            os.fsync(f.fileno())


def reduce_flow_stats(engine):
    samples = []
    for flow_id, stats in engine.flow_stats().items():
        five_tuple = engine.classify(flow_id)
        samples.append(FlowSample(five_tuple.source_address,
                                  five_tuple.destination_address,
                                  stats.tx_bytes,
                                  stats.rx_bytes,
                                  flow_throughput_mbps(stats.rx_bytes,
                                                       stats.time_first_tx_packet,
                                                       stats.time_last_rx_packet)))
    return samples


class DistanceSweep:
    def __init__(self, spec, increment, duration, settings=None, engine_factory=LinkSimulation, output_dir=".",
                 max_distance=None, max_iterations=None):
        self.settings = settings if settings is not None else settings_from_file
        self.spec = spec

        if increment is None or not math.isfinite(increment) or increment <= 0:
            raise ConfigurationError(f"Distance increment must be a positive number, not {increment!r}")
        if duration is None or not math.isfinite(duration) or duration <= self.settings.CLIENT_START_S:
            raise ConfigurationError(f"Simulation time must be larger than the client start time "
                                     f"({self.settings.CLIENT_START_S} s), not {duration!r}")
        if self.settings.INITIAL_DISTANCE_M <= 0:
            raise ConfigurationError(f"Initial distance must be positive, not {self.settings.INITIAL_DISTANCE_M}")
        if max_iterations is not None and max_iterations < 1:
            raise ConfigurationError(f"Maximum number of iterations must be at least 1, not {max_iterations}")
        if max_distance is not None and (not math.isfinite(max_distance)
                                         or max_distance < self.settings.INITIAL_DISTANCE_M):
            raise ConfigurationError(f"Maximum distance must be a number not below the initial distance "
                                     f"({self.settings.INITIAL_DISTANCE_M} m), not {max_distance!r}")

        self.increment = increment
        self.duration = duration
        self.engine_factory = engine_factory
        self.max_distance = max_distance
        self.max_iterations = max_iterations

        self.probe = SignalProbe()
        self.result_file = ResultFile(os.path.join(output_dir, result_file_name(spec, self.settings)),
                                      spec.name, duration, self.settings.PACKET_INTERVAL_S)

    def initial_state(self):
        return SweepState(distance=float(self.settings.INITIAL_DISTANCE_M))

    def build_scenario(self, engine, distance):
        s = self.settings

        print(f"Setting physical layer for propagation model {self.spec.name}...")
        engine.create_nodes(self.spec.positions(distance))
        engine.configure_phy(s.TX_POWER_DBM, s.ANTENNA_GAIN_DBI, s.CHANNEL_SETTINGS)
        engine.set_propagation_delay("ConstantSpeedPropagationDelayModel")
        self.spec.apply(engine)
        engine.install_adhoc(s.ADDRESS_BASE, s.ADDRESS_MASK)

        self.probe.clear()
        engine.connect_sniffer(SINK, self.probe.record)

        engine.install_udp_server(SINK, s.UDP_PORT, s.SERVER_START_S, self.duration)
        engine.install_udp_client(SOURCE, engine.address(SINK), s.UDP_PORT, s.PACKET_SIZE_BYTE,
                                  s.PACKET_INTERVAL_S, s.MAX_PACKETS, s.CLIENT_START_S, self.duration)
        engine.install_flow_monitor()

    def run_iteration(self, state: SweepState):
        """
        Build, run and measure one scenario at ``state.distance``.

        Returns the row written to the result file and the per-flow samples.
        Engine errors propagate; the row of a failed iteration is not written.
        """
        engine = self.engine_factory(self.settings)
        try:
            self.build_scenario(engine, state.distance)
            engine.run(until=self.duration + self.settings.STOP_MARGIN_S)

            throughput = server_throughput_mbps(engine.server_received(), self.settings.PACKET_SIZE_BYTE,
                                                self.duration)
            samples = reduce_flow_stats(engine)
            rss = self.probe.read()
        finally:
            engine.destroy()
            self.probe.clear()

        self.report(state.distance, rss, throughput, samples)

        row = ResultRow(state.distance, rss, throughput)
        self.result_file.append(row)
        return row, samples

    def report(self, distance, rss, throughput, samples):
        rows = [dict(sample._asdict(), rss=format_value(rss)) for sample in samples]
        if len(rows) > 0:
            print(tabulate(rows, headers="keys"))
        logging.info(f"distance {format_value(distance)} m, rss {format_value(rss)} dBm, "
                     f"server throughput {format_value(throughput)} Mbps")

    def bound_reached(self, state: SweepState):
        if self.max_iterations is not None and state.iteration >= self.max_iterations:
            logging.warning(f"Stopping after {state.iteration} iterations, the link did not collapse")
            return True
        if self.max_distance is not None and state.distance > self.max_distance:
            logging.warning(f"Stopping beyond {format_value(self.max_distance)} m, the link did not collapse")
            return True
        return False

    def run(self):
        print(f"\nDistanceSweep -> run {self.spec.name}")
        self.result_file.write_header()

        rows = []
        state = self.initial_state()
        while not self.bound_reached(state):
            row, _ = self.run_iteration(state)
            rows.append(row)
            state = SweepState(distance=state.distance + self.increment,
                               rss=row.rss,
                               throughput=row.throughput,
                               iteration=state.iteration + 1)
            if link_collapsed(row.throughput):
                print(f"Connection lost at {format_value(row.distance)}m.")
                break

        return rows
