from typing import NamedTuple

from tabulate import tabulate


class FiveTuple(NamedTuple):
    source_address: str
    destination_address: str
    protocol: int
    source_port: int
    destination_port: int


class FlowStats:
    def __init__(self):
        self.tx_bytes = 0
        self.rx_bytes = 0
        self.tx_packets = 0
        self.rx_packets = 0
        self.lost_packets = 0
        self.dropped_packets = {}
        self.time_first_tx_packet = None
        self.time_last_tx_packet = None
        self.time_first_rx_packet = None
        self.time_last_rx_packet = None
        self.delay_sum = 0.0

    def mean_delay(self):
        if self.rx_packets == 0:
            return None
        return self.delay_sum / self.rx_packets


class Ipv4FlowClassifier:
    """Gives every distinct five-tuple a flow id, starting at 1."""

    def __init__(self):
        self.flows = {}

    def classify(self, packet):
        five_tuple = FiveTuple(packet.source_address, packet.destination_address, packet.protocol,
                               packet.source_port, packet.destination_port)
        flow_id = self.flows.get(five_tuple)
        if flow_id is None:
            flow_id = len(self.flows) + 1
            self.flows[five_tuple] = flow_id
        return flow_id

    def find_flow(self, flow_id):
        for five_tuple, _flow_id in self.flows.items():
            if _flow_id == flow_id:
                return five_tuple
        return None


class FlowMonitor:
    """
    Per-flow IP level statistics: packets are tracked from the first node that
    sends them until the node they are addressed to receives them.
    """

    def __init__(self, env, settings):
        self.env = env
        self.settings = settings
        self.classifier = Ipv4FlowClassifier()
        self.stats = {}
        self.in_flight = {}  # packet uid -> (flow id, first tx time)

    def install(self, node):
        node.ip_tx_trace.append(self.report_first_tx)
        node.ip_rx_trace.append(self.report_last_rx)
        node.mac.drop_trace.append(self.report_drop)

    def get_stats(self, flow_id):
        stats = self.stats.get(flow_id)
        if stats is None:
            stats = FlowStats()
            self.stats[flow_id] = stats
        return stats

    def report_first_tx(self, node, packet):
        flow_id = self.classifier.classify(packet)
        stats = self.get_stats(flow_id)
        now = self.env.now
        if stats.time_first_tx_packet is None:
            stats.time_first_tx_packet = now
        stats.time_last_tx_packet = now
        stats.tx_packets += 1
        stats.tx_bytes += packet.ip_size()
        self.in_flight[packet.uid] = (flow_id, now)

    def report_last_rx(self, node, packet):
        if node.address != packet.destination_address:
            return
        tracked = self.in_flight.pop(packet.uid, None)
        if tracked is None:
            return

        flow_id, sent_at = tracked
        stats = self.get_stats(flow_id)
        now = self.env.now
        if stats.time_first_rx_packet is None:
            stats.time_first_rx_packet = now
        stats.time_last_rx_packet = now
        stats.rx_packets += 1
        stats.rx_bytes += packet.ip_size()
        stats.delay_sum += now - sent_at

    def report_drop(self, node, packet, reason):
        tracked = self.in_flight.pop(packet.uid, None)
        if tracked is None:
            return

        stats = self.get_stats(tracked[0])
        stats.dropped_packets[reason.fullname] = stats.dropped_packets.get(reason.fullname, 0) + 1
        stats.lost_packets += 1

    def check_for_lost_packets(self, max_delay=None):
        if max_delay is None:
            max_delay = self.settings.FLOW_LOST_TIMEOUT_S
        now = self.env.now
        for uid, (flow_id, sent_at) in list(self.in_flight.items()):
            if now - sent_at > max_delay:
                del self.in_flight[uid]
                self.get_stats(flow_id).lost_packets += 1

    def get_flow_stats(self):
        return dict(sorted(self.stats.items()))

    def __str__(self):
        rows = []
        for flow_id, stats in self.get_flow_stats().items():
            five_tuple = self.classifier.find_flow(flow_id)
            rows.append({"flow": flow_id,
                         "source": f"{five_tuple.source_address}:{five_tuple.source_port}",
                         "destination": f"{five_tuple.destination_address}:{five_tuple.destination_port}",
                         "tx_packets": stats.tx_packets,
                         "rx_packets": stats.rx_packets,
                         "first_tx": stats.time_first_tx_packet,
                         "first_rx": stats.time_first_rx_packet,
                         "last_rx": stats.time_last_rx_packet,
                         "lost_packets": stats.lost_packets})
        return tabulate(rows, headers="keys")
