import numpy as np
import pandas as pd


def dbm_to_w(dbm):
    return 10 ** ((dbm - 30) / 10)


def w_to_dbm(w):
    return 10 * np.log10(w) + 30


def thermal_noise_dbm(settings, width_hz):
    # kTB at 290 K plus the receiver noise figure
    return settings.THERMAL_NOISE_DBM_HZ + 10 * np.log10(width_hz) + settings.NOISE_FIGURE_DB


def server_throughput_mbps(received_packets, packet_size, duration_s):
    """Throughput seen by the UDP server over the nominal simulation time."""
    return received_packets * packet_size * 8 / (duration_s * 1000000.0)


def flow_throughput_mbps(rx_bytes, time_first_tx, time_last_rx):
    """Throughput of one flow over its observed span, in binary megabits per second."""
    if rx_bytes == 0 or time_last_rx is None or time_first_tx is None:
        return 0.0
    span = time_last_rx - time_first_tx
    if span <= 0:
        return 0.0
    return rx_bytes * 8.0 / span / 1024 / 1024


def format_value(value):
    # Same rendering as a default C++ ostream: six significant digits
    if value is None:
        return "nan"
    return format(value, "g")


def load_results(path):
    """
    Read a distance sweep result file into a DataFrame.

    The three header lines above the column labels end up in ``df.attrs``.
    """
    with open(path, "r") as f:
        f.readline()  # "Simulation Time,Packet Interval"
        model = f.readline().strip().split(":", 1)[1].strip()
        duration, interval = (float(x) for x in f.readline().strip().split(","))

    df = pd.read_csv(path, skiprows=3)
    df.columns = ["distance", "rss", "throughput"]
    df.attrs["model"] = model
    df.attrs["simulation_time"] = duration
    df.attrs["packet_interval"] = interval
    return df
