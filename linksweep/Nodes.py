from .Packets import Frame, FrameType, ht_mcs_table
from .utils import thermal_noise_dbm

import math
import logging

import simpy
from aenum import Enum, MultiValue


class MacState(Enum):
    _init_ = 'value fullname'
    _settings_ = MultiValue

    STATE_IDLE = 0, "IDLE"
    STATE_BACKOFF = 1, "BO"
    STATE_TX = 2, "TX"
    STATE_WAIT_ACK = 3, "W_ACK"


class DropReason(Enum):
    _init_ = 'value fullname'
    _settings_ = MultiValue

    QUEUE_FULL = 0, "queue full"
    MAX_DELAY = 1, "queue delay exceeded"
    RETRY_LIMIT = 2, "retry limit reached"


class Phy:
    """
    Receiving side decisions, in order: below the sensitivity the frame is not
    seen at all, otherwise the sniffer trace fires; the preamble must then be
    detected (minimum RSSI and SNR) and the payload survive the error curve of
    its MCS.
    """

    def __init__(self, env, settings, node, channel_settings, rng):
        self.env = env
        self.settings = settings
        self.node = node
        self.rng = rng

        self.channel_settings = channel_settings
        self.mcs_table = ht_mcs_table(settings, channel_settings.width_mhz)
        self.noise_dbm = thermal_noise_dbm(settings, channel_settings.width_hz())

        self.tx_power_dbm = settings.TX_POWER_DBM
        self.tx_gain_dbi = settings.ANTENNA_GAIN_DBI
        self.rx_gain_dbi = settings.ANTENNA_GAIN_DBI

        self.channel = None
        self.monitor_sniffer_rx = []

        # Statistics
        self.frames_sniffed = 0
        self.frames_missed = 0
        self.frames_corrupted = 0

    def set_channel(self, channel):
        self.channel = channel
        channel.add(self)

    def position(self):
        return self.node.position

    def connect_sniffer(self, callback):
        self.monitor_sniffer_rx.append(callback)

    def disconnect_sniffers(self):
        self.monitor_sniffer_rx = []

    def send(self, frame):
        duration = frame.airtime()
        self.channel.transmit(self, frame, duration)
        return duration

    def error_rate(self, frame, snr_db):
        # ACKs go out at a robust basic rate
        threshold = self.mcs_table[0].min_snr_db if frame.is_ack() else frame.mcs.min_snr_db
        return 0.5 * (1 - math.tanh(self.settings.PER_SLOPE_PER_DB * (snr_db - threshold) / 2))

    def receive(self, frame, rx_power_dbm):
        if rx_power_dbm < self.settings.RX_SENSITIVITY_DBM:
            return

        self.frames_sniffed += 1
        for callback in self.monitor_sniffer_rx:
            callback(rx_power_dbm, self.noise_dbm)

        snr_db = rx_power_dbm - self.noise_dbm
        if rx_power_dbm < self.settings.PREAMBLE_MIN_RSSI_DBM or snr_db < self.settings.PREAMBLE_THRESHOLD_DB:
            logging.debug(f"{self.node.uid}\tPreamble of {frame} not detected, rss {rx_power_dbm:.2f} dBm")
            self.frames_missed += 1
            return

        if self.rng.random() < self.error_rate(frame, snr_db):
            logging.debug(f"{self.node.uid}\tFrame {frame} corrupted, snr {snr_db:.2f} dB")
            self.frames_corrupted += 1
            return

        self.node.mac.receive(frame, snr_db)


class IdealRateManager:
    """Highest MCS whose threshold (plus margin) the last acknowledged SNR clears."""

    def __init__(self, settings, mcs_table):
        self.settings = settings
        self.mcs_table = mcs_table
        self.last_snr_db = None

    def select(self):
        selected = self.mcs_table[0]
        if self.last_snr_db is None:
            return selected
        for mcs in self.mcs_table:
            if mcs.min_snr_db + self.settings.RATE_MARGIN_DB <= self.last_snr_db:
                selected = mcs
        return selected

    def report_ack(self, snr_db):
        self.last_snr_db = snr_db


class AdhocMac:
    """DCF without RTS/CTS: backoff, one data frame, wait for the ACK, retry."""

    def __init__(self, env, settings, node, phy, rng):
        self.env = env
        self.settings = settings
        self.node = node
        self.phy = phy
        self.rng = rng

        self.queue = simpy.Store(env)
        self.rate_manager = IdealRateManager(settings, phy.mcs_table)
        self.sequence_number = 0
        self.last_seq_from = {}
        self.pending = None  # (seq, attempt, event) of the frame waiting for its ACK
        self.drop_trace = []

        # Statistics
        self.frames_sent = 0
        self.retransmissions = 0
        self.duplicates = 0
        self.drops = {reason.name: 0 for reason in DropReason}

        # State vars
        self.state = None
        self.states_time = []
        self.time_spent_in = {state.name: 0 for state in MacState}
        self.state_change(MacState.STATE_IDLE)

    def state_change(self, state_to):
        if state_to is not self.state:
            if len(self.states_time) > 0:
                self.time_spent_in[self.state.name] += (self.env.now - self.states_time[-1])
            self.state = state_to
            self.states_time.append(self.env.now)

    def enqueue(self, packet):
        if len(self.queue.items) >= self.settings.MAC_QUEUE_SIZE:
            self.drop(packet, DropReason.QUEUE_FULL)
            return False
        packet.enqueued_at = self.env.now
        self.queue.put(packet)
        return True

    def drop(self, packet, reason: DropReason):
        self.drops[reason.name] += 1
        for callback in self.drop_trace:
            callback(self.node, packet, reason)

    def next_sequence_number(self):
        seq = self.sequence_number
        self.sequence_number = (self.sequence_number + 1) % 4096
        return seq

    def difs(self):
        return self.settings.SIFS_S + 2 * self.settings.SLOT_S

    def ack_timeout(self):
        ack_duration = Frame(self.settings, FrameType.ACK, None, None, 0).airtime()
        return self.settings.SIFS_S + self.settings.SLOT_S + ack_duration

    def run(self):
        while True:
            self.state_change(MacState.STATE_IDLE)
            packet = yield self.queue.get()

            if self.env.now - packet.enqueued_at > self.settings.MAC_QUEUE_MAX_DELAY_S:
                self.drop(packet, DropReason.MAX_DELAY)
                continue

            yield self.env.process(self.transmit(packet))

    def transmit(self, packet):
        seq = self.next_sequence_number()
        peer = self.node.peer_station()
        cw = self.settings.CW_MIN

        for attempt in range(self.settings.RETRY_LIMIT + 1):
            self.state_change(MacState.STATE_BACKOFF)
            backoff = self.rng.integers(0, cw + 1) * self.settings.SLOT_S
            yield self.env.timeout(self.difs() + backoff)

            frame = Frame(self.settings, FrameType.DATA, self.node.uid, peer, seq, packet, attempt)
            frame.mcs = self.rate_manager.select()
            ack_event = self.env.event()
            self.pending = (seq, attempt, ack_event)

            self.state_change(MacState.STATE_TX)
            duration = self.phy.send(frame)
            self.frames_sent += 1
            if frame.is_retry():
                self.retransmissions += 1
            yield self.env.timeout(duration)

            self.state_change(MacState.STATE_WAIT_ACK)
            timeout = self.env.timeout(self.ack_timeout())
            result = yield ack_event | timeout
            self.pending = None

            if ack_event in result:
                self.rate_manager.report_ack(result[ack_event])
                return

            logging.debug(f"{self.node.uid}\tNo ACK for seq {seq} attempt {attempt}")
            cw = min(2 * (cw + 1) - 1, self.settings.CW_MAX)

        self.drop(packet, DropReason.RETRY_LIMIT)

    def receive(self, frame, snr_db):
        if frame.dst != self.node.uid:
            return

        if frame.is_ack():
            if self.pending is not None:
                seq, attempt, ack_event = self.pending
                if frame.seq == seq and frame.attempt == attempt and not ack_event.triggered:
                    ack_event.succeed(snr_db)
            return

        self.env.process(self.send_ack(frame))

        if frame.is_retry() and self.last_seq_from.get(frame.src) == frame.seq:
            self.duplicates += 1
            return
        self.last_seq_from[frame.src] = frame.seq
        self.node.receive(frame.packet)

    def send_ack(self, frame):
        yield self.env.timeout(self.settings.SIFS_S)
        self.phy.send(Frame.ack_for(frame))


class Node:
    def __init__(self, env: simpy.Environment, _settings, _id, _position):
        self.env = env
        self.settings = _settings

        # Properties
        self.uid = _id
        self.position = _position
        self.address = None

        self.phy = None
        self.mac = None
        self.nodes = []  # list containing the other nodes in the scenario
        self.sockets = {}

        # Traces
        self.ip_tx_trace = []
        self.ip_rx_trace = []

    def add_meta(self, nodes):
        self.nodes = nodes

    def peer_station(self):
        for node in self.nodes:
            if node is not self:
                return node.uid
        return None

    def bind(self, port, application):
        self.sockets[port] = application

    def send(self, packet):
        for callback in self.ip_tx_trace:
            callback(self, packet)
        self.mac.enqueue(packet)

    def receive(self, packet):
        for callback in self.ip_rx_trace:
            callback(self, packet)

        application = self.sockets.get(packet.destination_port)
        if application is not None:
            application.receive(packet)

    def run(self):
        self.env.process(self.mac.run())
