import math
from typing import NamedTuple

from aenum import auto, IntEnum


class FrameType(IntEnum):
    DATA = auto()
    ACK = auto()


class Mcs(NamedTuple):
    index: int
    ndbps: int          # data bits per OFDM symbol
    min_snr_db: float   # SNR at which half of the frames are lost

    def rate_mbps(self, symbol_s):
        return self.ndbps / symbol_s / 1e6


def ht_mcs_table(settings, width_mhz):
    return [Mcs(i, ndbps, snr) for i, (ndbps, snr) in
            enumerate(zip(settings.HT_NDBPS[width_mhz], settings.HT_MCS_SNR_DB))]


def ofdm_symbols(num_bytes, ndbps):
    # 16 service bits + payload + 6 tail bits
    return math.ceil((16 + 8 * num_bytes + 6) / ndbps)


def ht_airtime(settings, num_bytes, mcs: Mcs):
    return settings.HT_PREAMBLE_S + ofdm_symbols(num_bytes, mcs.ndbps) * settings.SYMBOL_S


def legacy_airtime(settings, num_bytes):
    return settings.LEGACY_PREAMBLE_S + ofdm_symbols(num_bytes, settings.ACK_NDBPS) * settings.SYMBOL_S


class Packet:
    """
    UDP datagram carrying a sequence number and a send timestamp.

    ``size`` is the application payload, as configured on the client. ``uid``
    is unique within one scenario.
    """
    def __init__(self, settings, uid, size, seq, ts, source_address, source_port, destination_address, destination_port):
        self.uid = uid

        self.settings = settings
        self.size = size
        self.seq = seq
        self.ts = ts
        self.source_address = source_address
        self.source_port = source_port
        self.destination_address = destination_address
        self.destination_port = destination_port
        self.protocol = 17

        # Meta data
        self.enqueued_at = None

    def ip_size(self):
        return self.size + self.settings.UDP_HEADER_BYTE + self.settings.IP_HEADER_BYTE

    def __str__(self):
        return f"uid:{self.uid} | seq:{self.seq} | {self.source_address}:{self.source_port} -> " \
               f"{self.destination_address}:{self.destination_port} | size:{self.size}"


class Frame:
    def __init__(self, settings, frame_type: FrameType, src, dst, seq, packet=None, attempt=0):
        self.settings = settings
        self.type = frame_type
        self.src = src
        self.dst = dst
        self.seq = seq
        self.packet = packet
        self.attempt = attempt
        self.mcs = None

    @classmethod
    def ack_for(cls, frame):
        return cls(frame.settings, FrameType.ACK, frame.dst, frame.src, frame.seq, attempt=frame.attempt)

    def size(self):
        if self.type is FrameType.ACK:
            return self.settings.ACK_SIZE_BYTE
        return self.packet.ip_size() + self.settings.LLC_BYTE + self.settings.MAC_HEADER_BYTE + self.settings.FCS_BYTE

    def airtime(self):
        if self.type is FrameType.ACK:
            return legacy_airtime(self.settings, self.size())
        return ht_airtime(self.settings, self.size(), self.mcs)

    def is_retry(self):
        return self.attempt > 0

    def is_ack(self):
        return self.type is FrameType.ACK

    def __str__(self):
        return f"{self.type.name} {self.src}->{self.dst} seq:{self.seq} attempt:{self.attempt}"
