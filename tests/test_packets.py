import pytest

from linksweep.errors import ConfigurationError
from linksweep.Links import ChannelSettings
from linksweep.Packets import Frame, FrameType, Packet, ht_mcs_table
from linksweep.utils import thermal_noise_dbm


def data_frame(settings, mcs_index, size=1450):
    packet = Packet(settings, 0, size, 0, 0.0, "10.1.1.1", 49153, "10.1.1.2", 9)
    frame = Frame(settings, FrameType.DATA, 0, 1, 0, packet)
    frame.mcs = ht_mcs_table(settings, 40)[mcs_index]
    return frame


def test_frame_sizes(settings):
    frame = data_frame(settings, 7)
    assert frame.packet.ip_size() == 1478
    # + LLC/SNAP, QoS MAC header and FCS
    assert frame.size() == 1516
    assert Frame.ack_for(frame).size() == 14


def test_ht_airtime(settings):
    # 12150 bits over 540 bits per symbol: 23 symbols after the 36 us preamble
    assert data_frame(settings, 7).airtime() == pytest.approx(128e-6)
    # 54 bits per symbol: 225 symbols
    assert data_frame(settings, 0).airtime() == pytest.approx(936e-6)


def test_ack_airtime(settings):
    ack = Frame.ack_for(data_frame(settings, 7))
    assert ack.is_ack()
    assert ack.airtime() == pytest.approx(28e-6)


def test_ack_mirrors_data_frame(settings):
    frame = data_frame(settings, 3)
    frame.attempt = 2
    ack = Frame.ack_for(frame)
    assert (ack.src, ack.dst, ack.seq, ack.attempt) == (1, 0, 0, 2)


def test_mcs_rates(settings):
    rates = [mcs.rate_mbps(settings.SYMBOL_S) for mcs in ht_mcs_table(settings, 40)]
    assert rates == pytest.approx([13.5, 27, 40.5, 54, 81, 108, 121.5, 135])


def test_default_channel_settings():
    channel = ChannelSettings.parse("{0, 40, BAND_5GHZ, 0}")
    assert (channel.number, channel.width_mhz, channel.frequency_mhz) == (38, 40, 5190)
    assert str(channel) == "{38, 40, BAND_5GHZ, 0}"


def test_explicit_channel_number():
    channel = ChannelSettings.parse("{36, 20, BAND_5GHZ, 0}")
    assert channel.frequency_mhz == 5180
    assert channel.width_hz() == 20e6


@pytest.mark.parametrize("text", ["", "40MHz", "{0, 80, BAND_5GHZ, 0}", "{0, 40, BAND_60GHZ, 0}"])
def test_invalid_channel_settings(text):
    with pytest.raises(ConfigurationError):
        ChannelSettings.parse(text)


def test_noise_floor_for_40mhz(settings):
    assert thermal_noise_dbm(settings, 40e6) == pytest.approx(-90.98, abs=0.01)
