from .config import settings as settings_from_file
from .errors import ConfigurationError, EngineError
from .Links import ChannelSettings, WifiChannel
from .Nodes import Node, Phy, AdhocMac
from .Applications import UdpServer, UdpClient
from .Flows import FlowMonitor

import ipaddress
import itertools
import logging

import numpy as np
import simpy
from tabulate import tabulate


class LinkSimulation:
    """
    One self-contained two-node wifi scenario.

    Build it step by step (nodes, PHY, propagation, MAC and addresses,
    applications, monitors), run it once and read the statistics. After
    ``destroy()`` the object refuses any further use; build a new one for the
    next scenario.
    """

    def __init__(self, settings=None):
        logging.info('LinkSimulation -> init')
        self.settings = settings if settings is not None else settings_from_file

        self.simpy_env = simpy.Environment()
        # Fresh generator per scenario: identical inputs give identical runs
        self.rng = np.random.default_rng([self.settings.SEED, self.settings.RUN_NUMBER])
        self.channel = WifiChannel(self.simpy_env, self.settings, self.rng)
        self.channel_settings = None

        self.nodes = []
        self.applications = []
        self.packet_ids = itertools.count()
        self.flow_monitor = None
        self.has_run = False
        self.destroyed = False

    def _check_alive(self):
        if self.destroyed:
            raise EngineError("The scenario has been destroyed")

    def _check_nodes(self):
        self._check_alive()
        if len(self.nodes) != 2:
            raise EngineError("Create the two nodes first")

    def node(self, uid):
        self._check_nodes()
        return self.nodes[uid]

    def create_nodes(self, positions):
        self._check_alive()
        if len(self.nodes) > 0:
            raise EngineError("Nodes have already been created")
        if len(positions) != 2:
            raise EngineError(f"A link needs exactly two nodes, not {len(positions)}")

        for uid, position in enumerate(positions):
            self.nodes.append(Node(self.simpy_env, self.settings, uid, position))
        for node in self.nodes:
            node.add_meta(self.nodes)
        logging.info(f"Nodes at {positions}")
        return self.nodes

    def configure_phy(self, tx_power_dbm, antenna_gain_dbi, channel_settings):
        self._check_nodes()
        if isinstance(channel_settings, str):
            channel_settings = ChannelSettings.parse(channel_settings)
        if not np.isfinite(tx_power_dbm) or not np.isfinite(antenna_gain_dbi):
            raise ConfigurationError("Transmit power and antenna gain must be finite")
        self.channel_settings = channel_settings

        for node in self.nodes:
            phy = Phy(self.simpy_env, self.settings, node, channel_settings, self.rng)
            phy.tx_power_dbm = tx_power_dbm
            phy.tx_gain_dbi = antenna_gain_dbi
            phy.rx_gain_dbi = antenna_gain_dbi
            phy.set_channel(self.channel)
            node.phy = phy
        logging.info(f"802.11n PHY: {tx_power_dbm} dBm, {antenna_gain_dbi} dBi, channel {channel_settings}")

    def add_propagation_loss(self, name, **attributes):
        self._check_alive()
        self.channel.add_propagation_loss(name, **attributes)

    def set_propagation_delay(self, name, **attributes):
        self._check_alive()
        self.channel.set_propagation_delay(name, **attributes)

    def install_adhoc(self, base=None, mask=None):
        self._check_nodes()
        if any(node.phy is None for node in self.nodes):
            raise EngineError("Configure the PHY before installing the MAC")

        base = base if base is not None else self.settings.ADDRESS_BASE
        mask = mask if mask is not None else self.settings.ADDRESS_MASK
        try:
            network = ipaddress.IPv4Network(f"{base}/{mask}")
        except ValueError as e:
            raise ConfigurationError(f"Invalid address base {base}/{mask}: {e}") from e

        hosts = network.hosts()
        for node in self.nodes:
            node.mac = AdhocMac(self.simpy_env, self.settings, node, node.phy, self.rng)
            node.address = str(next(hosts))
            logging.info(f"{node.uid}\tAddress {node.address}")

    def address(self, uid):
        return self.node(uid).address

    def connect_sniffer(self, uid, callback):
        node = self.node(uid)
        if node.phy is None:
            raise EngineError("Configure the PHY before connecting a sniffer")
        node.phy.connect_sniffer(callback)

    def install_udp_server(self, uid, port, start, stop):
        server = UdpServer(self.simpy_env, self.settings, self.node(uid), port, start, stop)
        self.applications.append(server)
        return server

    def install_udp_client(self, uid, remote_address, remote_port, packet_size, interval, max_packets, start, stop):
        client = UdpClient(self.simpy_env, self.settings, self.node(uid), remote_address, remote_port,
                           packet_size, interval, max_packets, start, stop, self.packet_ids)
        self.applications.append(client)
        return client

    def install_flow_monitor(self):
        self._check_nodes()
        if any(node.mac is None for node in self.nodes):
            raise EngineError("Install the MAC before the flow monitor")
        self.flow_monitor = FlowMonitor(self.simpy_env, self.settings)
        for node in self.nodes:
            self.flow_monitor.install(node)
        return self.flow_monitor

    def run(self, until):
        logging.info('LinkSimulation -> run')
        self._check_nodes()
        if self.has_run:
            raise EngineError("A scenario runs only once")
        if any(node.mac is None for node in self.nodes):
            raise EngineError("Install the MAC before running")

        for node in self.nodes:
            node.run()
        for application in self.applications:
            if isinstance(application, UdpClient):
                self.simpy_env.process(application.run())

        self.has_run = True
        self.simpy_env.run(until=until)

        if self.flow_monitor is not None:
            self.flow_monitor.check_for_lost_packets()
            logging.debug(f"Flows\n{self.flow_monitor}")
        logging.debug(f"Frames\n{tabulate(self.frame_stats(), headers='keys')}")

    def frame_stats(self):
        """Per node: frames sent, sniffed, missed (no preamble), corrupted, duplicates and drops."""
        self._check_nodes()
        rows = []
        for node in self.nodes:
            rows.append({"node": node.uid,
                         "sent": node.mac.frames_sent,
                         "retransmissions": node.mac.retransmissions,
                         "sniffed": node.phy.frames_sniffed,
                         "missed": node.phy.frames_missed,
                         "corrupted": node.phy.frames_corrupted,
                         "duplicates": node.mac.duplicates,
                         **{reason.lower(): count for reason, count in node.mac.drops.items()}})
        return rows

    def server_received(self):
        self._check_alive()
        return sum(application.get_received() for application in self.applications
                   if isinstance(application, UdpServer))

    def flow_stats(self):
        self._check_alive()
        if self.flow_monitor is None:
            return {}
        return self.flow_monitor.get_flow_stats()

    def classify(self, flow_id):
        self._check_alive()
        return self.flow_monitor.classifier.find_flow(flow_id)

    def destroy(self):
        logging.info('LinkSimulation -> destroy')
        for node in self.nodes:
            if node.phy is not None:
                node.phy.disconnect_sniffers()
            node.env = None
        self.nodes = []
        self.applications = []
        self.flow_monitor = None
        self.channel = None
        self.simpy_env = None
        self.destroyed = True
