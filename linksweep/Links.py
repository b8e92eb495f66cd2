import re
import logging

from .errors import ConfigurationError, EngineError
from .Losses import create_loss_model, create_delay_model


# (band, width MHz) -> (default channel number, centre frequency MHz)
DEFAULT_CHANNELS = {
    ("BAND_2_4GHZ", 20): (1, 2412),
    ("BAND_2_4GHZ", 40): (3, 2422),
    ("BAND_5GHZ", 20): (36, 5180),
    ("BAND_5GHZ", 40): (38, 5190),
}

BAND_START_MHZ = {
    "BAND_2_4GHZ": 2407,
    "BAND_5GHZ": 5000,
}


class ChannelSettings:
    """
    Channel settings in the "{number, width, band, primary20}" notation.

    A zero number or width selects the default of the band.
    """

    def __init__(self, number, width_mhz, band, primary20):
        self.number = number
        self.width_mhz = width_mhz
        self.band = band
        self.primary20 = primary20

        self.frequency_mhz = None
        if number == 0:
            self.number, self.frequency_mhz = DEFAULT_CHANNELS[(band, width_mhz)]
        else:
            self.frequency_mhz = BAND_START_MHZ[band] + 5 * number

    @classmethod
    def parse(cls, text):
        match = re.fullmatch(r"\s*\{\s*(\d+)\s*,\s*(\d+)\s*,\s*(\w+)\s*,\s*(\d+)\s*\}\s*", text)
        if match is None:
            raise ConfigurationError(f"Cannot parse channel settings {text!r}")

        number, width, band, primary20 = int(match[1]), int(match[2]), match[3], int(match[4])
        if band not in BAND_START_MHZ:
            raise ConfigurationError(f"Unsupported band {band}")
        if width == 0:
            width = 20
        if (band, width) not in DEFAULT_CHANNELS:
            raise ConfigurationError(f"Channel width {width} MHz is not supported in {band}")
        return cls(number, width, band, primary20)

    def width_hz(self):
        return self.width_mhz * 1e6

    def __str__(self):
        return f"{{{self.number}, {self.width_mhz}, {self.band}, {self.primary20}}}"


class WifiChannel:
    """Shared medium between the PHYs of all nodes."""

    def __init__(self, env, settings, rng):
        self.env = env
        self.settings = settings
        self.rng = rng
        self.phys = []

        self.loss_model = None
        self.delay_model = None

    def add(self, phy):
        self.phys.append(phy)

    def add_propagation_loss(self, name, **attributes):
        if self.loss_model is not None:
            raise EngineError(f"A propagation loss model is already attached ({type(self.loss_model).__name__})")
        self.loss_model = create_loss_model(name, self.settings, self.rng, **attributes)
        logging.info(f"Propagation loss model {name} {attributes}")

    def set_propagation_delay(self, name, **attributes):
        self.delay_model = create_delay_model(name, self.settings, **attributes)

    def rx_power(self, sender, receiver):
        tx_power_dbm = sender.tx_power_dbm + sender.tx_gain_dbi
        return self.loss_model.calc_rx_power(tx_power_dbm, sender.position(), receiver.position()) \
               + receiver.rx_gain_dbi

    def transmit(self, sender, frame, duration):
        if self.loss_model is None or self.delay_model is None:
            raise EngineError("The channel needs a propagation loss and a propagation delay model")

        for receiver in self.phys:
            if receiver is sender:
                continue
            rx_power_dbm = self.rx_power(sender, receiver)
            delay = self.delay_model.get_delay(sender.position(), receiver.position())
            self.env.process(self.propagate(receiver, frame, rx_power_dbm, delay + duration))

    def propagate(self, receiver, frame, rx_power_dbm, delay):
        # The receiver evaluates the frame once its last bit arrived
        yield self.env.timeout(delay)
        receiver.receive(frame, rx_power_dbm)
