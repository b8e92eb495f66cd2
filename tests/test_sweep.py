import math
import os

import pytest

from linksweep.errors import ConfigurationError, EngineError
from linksweep.Flows import FiveTuple, FlowStats
from linksweep.Models import PropagationModelSpec
from linksweep.Positions import Position
from linksweep.Sweep import (DistanceSweep, FlowSample, ResultRow, SignalProbe, link_collapsed, reduce_flow_stats,
                             result_file_name)
from linksweep.utils import server_throughput_mbps


class FakeEngine:
    """
    Stands in for the link simulation: ``script(distance)`` gives the packets
    the server receives and the signal the sniffer reports (None: no frame).
    """

    def __init__(self, settings, script, log):
        self.settings = settings
        self.script = script
        self.log = log
        self.positions = None
        self.loss = None
        self.sniffers = []
        self.received = None
        self.destroyed = False
        log.append(self)

    def create_nodes(self, positions):
        self.positions = positions

    def configure_phy(self, tx_power_dbm, antenna_gain_dbi, channel_settings):
        pass

    def set_propagation_delay(self, name, **attributes):
        pass

    def add_propagation_loss(self, name, **attributes):
        self.loss = (name, attributes)

    def install_adhoc(self, base=None, mask=None):
        pass

    def address(self, uid):
        return f"10.1.1.{uid + 1}"

    def connect_sniffer(self, uid, callback):
        self.sniffers.append((uid, callback))

    def install_udp_server(self, uid, port, start, stop):
        pass

    def install_udp_client(self, uid, remote_address, remote_port, packet_size, interval, max_packets, start, stop):
        pass

    def install_flow_monitor(self):
        pass

    def run(self, until):
        distance = self.positions[1].x
        self.received, rss = self.script(distance)
        if rss is not None:
            for _, callback in self.sniffers:
                callback(rss - 10, -91.0)
                callback(rss, -91.0)

    def server_received(self):
        return self.received

    def flow_stats(self):
        stats = FlowStats()
        stats.tx_bytes = 2000 * 1478
        stats.rx_bytes = self.received * 1478
        stats.rx_packets = self.received
        stats.time_first_tx_packet = 2.0
        stats.time_last_rx_packet = 3.0 if self.received else None
        return {1: stats}

    def classify(self, flow_id):
        return FiveTuple("10.1.1.1", "10.1.1.2", 17, 49153, 9)

    def destroy(self):
        self.destroyed = True


def fake_factory(script, log):
    return lambda settings: FakeEngine(settings, script, log)


def collapse_at(limit, received=1000):
    def script(distance):
        if distance >= limit:
            return 0, -40.0 - distance
        return received, -40.0 - distance
    return script


def make_sweep(settings, tmp_path, script, log, ordinal=0, increment=1.0, duration=3.0, **kwargs):
    spec = PropagationModelSpec.from_ordinal(ordinal, settings)
    return DistanceSweep(spec, increment, duration, settings, engine_factory=fake_factory(script, log),
                         output_dir=str(tmp_path), **kwargs)


def test_result_file_layout(settings, tmp_path):
    log = []
    sweep = make_sweep(settings, tmp_path, collapse_at(8.0), log)
    sweep.run()

    path = tmp_path / "new_stats_FriisPropagationLossModel.csv"
    assert path.read_text() == (
        "Simulation Time,Packet Interval\n"
        "model: FriisPropagationLossModel\n"
        "3,0.0001547\n"
        "distance [m],rss [dBm],throughput [Mbps]\n"
        "5,-45,3.86667\n"
        "6,-46,3.86667\n"
        "7,-47,3.86667\n"
        "8,-48,0\n"
    )


def test_header_written_once(settings, tmp_path):
    log = []
    make_sweep(settings, tmp_path, collapse_at(30.0), log).run()

    lines = (tmp_path / result_file_name(PropagationModelSpec.from_ordinal(0, settings), settings)) \
        .read_text().splitlines()
    assert lines.count("distance [m],rss [dBm],throughput [Mbps]") == 1
    assert lines[3] == "distance [m],rss [dBm],throughput [Mbps]"
    assert len(lines) == 4 + 26


def test_distance_advances_by_increment(settings, tmp_path):
    log = []
    rows = make_sweep(settings, tmp_path, collapse_at(12.0), log, increment=2.5).run()

    assert [row.distance for row in rows] == [5.0, 7.5, 10.0, 12.5]
    assert all(b.distance > a.distance for a, b in zip(rows, rows[1:]))


def test_stops_at_first_zero_throughput(settings, tmp_path):
    log = []
    rows = make_sweep(settings, tmp_path, collapse_at(9.0), log).run()

    assert rows[-1].throughput == 0
    assert all(row.throughput > 0 for row in rows[:-1])
    assert len(log) == len(rows)


def test_throughput_from_received_packets(settings, tmp_path):
    log = []
    rows = make_sweep(settings, tmp_path, collapse_at(6.0, received=4321), log, duration=2.5).run()

    assert rows[0].throughput == 4321 * 1450 * 8 / (2.5 * 1e6)
    assert rows[0].throughput == server_throughput_mbps(4321, 1450, 2.5)


def test_rss_is_last_sniffed_value(settings, tmp_path):
    log = []
    rows = make_sweep(settings, tmp_path, collapse_at(6.0), log).run()

    # The fake reports rss - 10 first, then rss
    assert rows[0].rss == -45.0


def test_rss_does_not_leak_between_iterations(settings, tmp_path):
    def script(distance):
        if distance == 5.0:
            return 100, -50.0
        return 0, None

    log = []
    rows = make_sweep(settings, tmp_path, script, log).run()

    assert [row.rss for row in rows] == [-50.0, None]
    assert (tmp_path / "new_stats_FriisPropagationLossModel.csv").read_text().endswith("6,nan,0\n")


def test_every_iteration_gets_a_fresh_engine(settings, tmp_path):
    log = []
    make_sweep(settings, tmp_path, collapse_at(8.0), log).run()

    assert len(set(map(id, log))) == 4
    assert all(engine.destroyed for engine in log)
    assert all(len(engine.sniffers) == 1 and engine.sniffers[0][0] == 1 for engine in log)


def test_ground_reflection_scenario(settings, tmp_path):
    log = []
    make_sweep(settings, tmp_path, collapse_at(5.0), log, ordinal=3).run()

    engine = log[0]
    assert engine.loss == ("TwoRayGroundPropagationLossModel", {"HeightAboveZ": 1.0})
    assert engine.positions == [Position(0.0, 0.0, 1.0), Position(5.0, 0.0, 1.0)]


def test_engine_failure_aborts_without_row(settings, tmp_path):
    def script(distance):
        if distance == 7.0:
            raise EngineError("boom")
        return 100, -50.0

    log = []
    sweep = make_sweep(settings, tmp_path, script, log)
    with pytest.raises(EngineError):
        sweep.run()

    lines = (tmp_path / "new_stats_FriisPropagationLossModel.csv").read_text().splitlines()
    assert lines[4:] == ["5,-50,0.386667", "6,-50,0.386667"]
    assert log[-1].destroyed


def test_iteration_bound(settings, tmp_path):
    log = []
    rows = make_sweep(settings, tmp_path, collapse_at(math.inf), log, max_iterations=6).run()

    assert len(rows) == 6
    assert all(row.throughput > 0 for row in rows)


def test_distance_bound(settings, tmp_path):
    log = []
    rows = make_sweep(settings, tmp_path, collapse_at(math.inf), log, max_distance=7.0).run()

    assert [row.distance for row in rows] == [5.0, 6.0, 7.0]


@pytest.mark.parametrize("increment, duration", [(0.0, 3.0), (-1.0, 3.0), (math.nan, 3.0), (1.0, 2.0),
                                                 (1.0, math.inf)])
def test_invalid_parameters(settings, tmp_path, increment, duration):
    with pytest.raises(ConfigurationError):
        make_sweep(settings, tmp_path, collapse_at(6.0), [], increment=increment, duration=duration)
    assert os.listdir(tmp_path) == []


@pytest.mark.parametrize("bounds", [{"max_distance": math.nan}, {"max_distance": math.inf}, {"max_distance": 1.0},
                                    {"max_distance": 4.99}, {"max_iterations": 0}])
def test_invalid_bounds(settings, tmp_path, bounds):
    with pytest.raises(ConfigurationError):
        make_sweep(settings, tmp_path, collapse_at(6.0), [], **bounds)
    assert os.listdir(tmp_path) == []


def test_distance_bound_at_initial_distance(settings, tmp_path):
    rows = make_sweep(settings, tmp_path, collapse_at(math.inf), [], max_distance=5.0).run()

    assert [row.distance for row in rows] == [5.0]


def test_flow_samples(settings):
    engine = FakeEngine(settings, collapse_at(10.0), [])
    engine.positions = [Position(0.0, 0.0), Position(5.0, 0.0)]
    engine.run(until=4.0)

    assert reduce_flow_stats(engine) == [
        FlowSample("10.1.1.1", "10.1.1.2", 2000 * 1478, 1000 * 1478, 1000 * 1478 * 8.0 / 1.0 / 1024 / 1024)
    ]


def test_flow_samples_without_reception(settings):
    engine = FakeEngine(settings, collapse_at(0.0), [])
    engine.positions = [Position(0.0, 0.0), Position(5.0, 0.0)]
    engine.run(until=4.0)

    assert reduce_flow_stats(engine)[0].throughput == 0.0


def test_signal_probe_keeps_one_value():
    probe = SignalProbe()
    assert probe.read() is None
    probe.record(-60.0, -91.0)
    probe.record(-70.0)
    assert probe.read() == -70.0
    probe.clear()
    assert probe.read() is None


def test_termination_predicate():
    assert link_collapsed(0)
    assert link_collapsed(0.0)
    assert not link_collapsed(1e-9)


def test_result_row_rendering():
    assert str(ResultRow(5.0, -48.663, 14.2236)) == "5,-48.663,14.2236"
    assert str(ResultRow(12.5, None, 0.0)) == "12.5,nan,0"


# Sweeps through the simpy engine. Durations are kept just above the client
# start so every iteration carries 50 ms of traffic.

def real_sweep(settings, tmp_path, ordinal, increment, duration=2.05, **kwargs):
    spec = PropagationModelSpec.from_ordinal(ordinal, settings)
    return DistanceSweep(spec, increment, duration, settings, output_dir=str(tmp_path), **kwargs)


def test_friis_link_collapses(settings, tmp_path):
    settings.update({"INITIAL_DISTANCE_M": 220.0})
    rows = real_sweep(settings, tmp_path, 0, 5.0).run()

    assert [row.distance for row in rows] == [220.0, 225.0, 230.0, 235.0]
    assert [row.throughput > 0 for row in rows] == [True, True, True, False]
    # The terminal frames are still sniffed, just not decoded
    assert rows[-1].rss == pytest.approx(-82.11, abs=0.01)


def test_three_log_distance_link_collapses(settings, tmp_path):
    settings.update({"INITIAL_DISTANCE_M": 235.0})
    rows = real_sweep(settings, tmp_path, 2, 5.0).run()

    assert [row.distance for row in rows] == [235.0, 240.0, 245.0, 250.0]
    assert rows[-1].throughput == 0
    assert all(row.throughput > 0 for row in rows[:-1])
    assert all(b.rss < a.rss for a, b in zip(rows, rows[1:]))


def test_fixed_signal_ignores_distance(settings, tmp_path):
    rows = real_sweep(settings, tmp_path, 1, 1.0, duration=3.0, max_iterations=3).run()

    assert [row.distance for row in rows] == [5.0, 6.0, 7.0]
    assert all(row.rss == pytest.approx(-79.0) for row in rows)
    assert all(row.throughput > 0 for row in rows)


def test_sweeps_are_reproducible(settings, tmp_path):
    settings.update({"INITIAL_DISTANCE_M": 40.0})
    first, second = tmp_path / "first", tmp_path / "second"
    first.mkdir()
    second.mkdir()

    real_sweep(settings, first, 4, 5.0, max_iterations=3).run()
    real_sweep(settings, second, 4, 5.0, max_iterations=3).run()

    name = "new_stats_NakagamiPropagationLossModel.csv"
    assert (first / name).read_text() == (second / name).read_text()


def test_throughput_falls_with_distance(settings, tmp_path):
    settings.update({"INITIAL_DISTANCE_M": 205.0})
    rows = real_sweep(settings, tmp_path, 0, 5.0, duration=3.0).run()

    assert [row.distance for row in rows] == [205.0, 210.0, 215.0, 220.0, 225.0, 230.0, 235.0]
    assert rows[-1].throughput == 0
    # Non-increasing step function, up to one percent of simulation noise
    assert all(b.throughput <= a.throughput * 1.01 for a, b in zip(rows, rows[1:]))
