import itertools
import logging

from .errors import ConfigurationError
from .Packets import Packet


class Application:
    def __init__(self, env, settings, node, start, stop):
        if stop is not None and stop < start:
            raise ConfigurationError(f"{type(self).__name__} stops ({stop} s) before it starts ({start} s)")
        self.env = env
        self.settings = settings
        self.node = node
        self.start = start
        self.stop = stop

    def is_running(self):
        return self.start <= self.env.now and (self.stop is None or self.env.now < self.stop)


class UdpServer(Application):
    """Counts the datagrams arriving on its port while it is running."""

    def __init__(self, env, settings, node, port, start, stop):
        super().__init__(env, settings, node, start, stop)
        self.port = port
        node.bind(port, self)

        self.received = 0
        self.highest_seq = None

    def receive(self, packet):
        if not self.is_running():
            return
        self.received += 1
        if self.highest_seq is None or packet.seq > self.highest_seq:
            self.highest_seq = packet.seq

    def get_received(self):
        return self.received

    def get_lost(self):
        if self.highest_seq is None:
            return 0
        return max(0, self.highest_seq + 1 - self.received)


class UdpClient(Application):
    """Sends fixed size datagrams at a constant interval."""

    def __init__(self, env, settings, node, remote_address, remote_port, packet_size, interval, max_packets,
                 start, stop, packet_ids=None):
        super().__init__(env, settings, node, start, stop)
        if packet_size < settings.SEQ_TS_HEADER_BYTE:
            raise ConfigurationError(f"Packet size {packet_size} cannot hold the sequence and timestamp header")
        if interval <= 0:
            raise ConfigurationError(f"Packet interval must be positive, not {interval}")

        self.remote_address = remote_address
        self.remote_port = remote_port
        self.packet_size = packet_size
        self.interval = interval
        self.max_packets = max_packets
        self.local_port = settings.UDP_EPHEMERAL_PORT
        self.packet_ids = packet_ids if packet_ids is not None else itertools.count()

        self.sent = 0

    def run(self):
        yield self.env.timeout(max(0.0, self.start - self.env.now))
        logging.info(f"{self.node.uid}\tStarting UDP client to {self.remote_address}:{self.remote_port}")

        while self.is_running() and self.sent < self.max_packets:
            packet = Packet(self.settings, next(self.packet_ids), self.packet_size, self.sent, self.env.now,
                            self.node.address, self.local_port, self.remote_address, self.remote_port)
            self.node.send(packet)
            self.sent += 1
            yield self.env.timeout(self.interval)

        logging.info(f"{self.node.uid}\tUDP client sent {self.sent} packets")
