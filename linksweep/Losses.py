"""
Propagation loss and delay models.

Every loss model turns a transmit power (dBm, antenna gain included) and the
positions of both antennas into a receive power (dBm). Attributes are set by
name when the model is attached to a channel; missing attributes fall back to
the defaults in the configuration file.
"""
import math
import logging

import numpy as np

from .errors import EngineError
from .utils import dbm_to_w, w_to_dbm


class PropagationLossModel:
    # attribute name -> settings key holding its default
    ATTRIBUTES = {}

    def __init__(self, settings, rng=None, **attributes):
        unknown = set(attributes) - set(self.ATTRIBUTES)
        if unknown:
            raise EngineError(f"{type(self).__name__} has no attribute(s) {sorted(unknown)}")

        self.settings = settings
        self.rng = rng
        self.attributes = {}
        for name, key in self.ATTRIBUTES.items():
            self.attributes[name] = attributes.get(name, settings[key])

    def calc_rx_power(self, tx_power_dbm, a, b):
        raise NotImplementedError

    def wavelength(self):
        return self.settings.SPEED_OF_LIGHT_M_S / self.attributes["Frequency"]


class FriisPropagationLossModel(PropagationLossModel):
    ATTRIBUTES = {
        "Frequency": "LOSS_FREQUENCY_HZ",
        "SystemLoss": "LOSS_SYSTEM_LOSS",
        "MinLoss": "LOSS_MIN_LOSS_DB",
    }

    def calc_rx_power(self, tx_power_dbm, a, b):
        distance = a.distance(b)
        min_loss = self.attributes["MinLoss"]
        if distance <= 0:
            return tx_power_dbm - min_loss

        _lambda = self.wavelength()
        if distance < 3 * _lambda:
            logging.debug(f"distance {distance} m is not in the far field of the antenna")

        numerator = _lambda ** 2
        denominator = 16 * math.pi ** 2 * distance ** 2 * self.attributes["SystemLoss"]
        loss_db = -10 * math.log10(numerator / denominator)
        return tx_power_dbm - max(loss_db, min_loss)


class FixedRssLossModel(PropagationLossModel):
    """Receive power is the configured constant, whatever the distance."""
    ATTRIBUTES = {
        "Rss": "FIXED_RSS_DBM",
    }

    def calc_rx_power(self, tx_power_dbm, a, b):
        return self.attributes["Rss"]


class ThreeLogDistancePropagationLossModel(PropagationLossModel):
    ATTRIBUTES = {
        "Distances": "THREE_LOG_DISTANCES_M",
        "Exponents": "THREE_LOG_EXPONENTS",
        "ReferenceLoss": "THREE_LOG_REFERENCE_LOSS_DB",
    }

    def calc_rx_power(self, tx_power_dbm, a, b):
        distance = a.distance(b)
        d0, d1, d2 = self.attributes["Distances"]
        n0, n1, n2 = self.attributes["Exponents"]
        reference_loss = self.attributes["ReferenceLoss"]

        if distance < d0:
            path_loss_db = 0
        elif distance < d1:
            path_loss_db = reference_loss + 10 * n0 * math.log10(distance / d0)
        elif distance < d2:
            path_loss_db = reference_loss + 10 * n0 * math.log10(d1 / d0) \
                           + 10 * n1 * math.log10(distance / d1)
        else:
            path_loss_db = reference_loss + 10 * n0 * math.log10(d1 / d0) \
                           + 10 * n1 * math.log10(d2 / d1) \
                           + 10 * n2 * math.log10(distance / d2)

        return tx_power_dbm - path_loss_db


class TwoRayGroundPropagationLossModel(PropagationLossModel):
    ATTRIBUTES = {
        "Frequency": "LOSS_FREQUENCY_HZ",
        "SystemLoss": "LOSS_SYSTEM_LOSS",
        "MinDistance": "TWO_RAY_MIN_DISTANCE_M",
        "HeightAboveZ": "ANTENNA_HEIGHT_M",
    }

    def calc_rx_power(self, tx_power_dbm, a, b):
        distance = a.distance(b)
        if distance <= self.attributes["MinDistance"]:
            return tx_power_dbm

        # Antenna heights are measured from the ground plane
        tx_height = a.z + self.attributes["HeightAboveZ"]
        rx_height = b.z + self.attributes["HeightAboveZ"]
        _lambda = self.wavelength()
        system_loss = self.attributes["SystemLoss"]

        # Below the crossover distance the ground ray does not matter: Friis
        d_cross = (4 * math.pi * tx_height * rx_height) / _lambda
        if distance <= d_cross:
            numerator = _lambda ** 2
            denominator = 16 * math.pi ** 2 * distance ** 2 * system_loss
        else:
            numerator = tx_height ** 2 * rx_height ** 2
            denominator = distance ** 4 * system_loss

        if numerator <= 0:
            # Antennas on the ground plane: no path
            return -math.inf
        return tx_power_dbm + 10 * math.log10(numerator / denominator)


class NakagamiPropagationLossModel(PropagationLossModel):
    """
    Fast fading only: the mean receive power equals the transmit power, each
    frame draws its power from a Nakagami-m distribution whose m depends on
    the distance band.
    """
    ATTRIBUTES = {
        "Distances": "NAKAGAMI_DISTANCES_M",
        "m": "NAKAGAMI_M",
    }

    def calc_rx_power(self, tx_power_dbm, a, b):
        if self.rng is None:
            raise EngineError("NakagamiPropagationLossModel needs a random number generator")

        distance = a.distance(b)
        d1, d2 = self.attributes["Distances"]
        m0, m1, m2 = self.attributes["m"]
        if distance < d1:
            m = m0
        elif distance < d2:
            m = m1
        else:
            m = m2

        power_w = dbm_to_w(tx_power_dbm)
        # The power of a Nakagami-m amplitude is Gamma(m, mean/m) distributed
        rx_w = self.rng.gamma(shape=m, scale=power_w / m)
        if rx_w <= 0:
            return -math.inf
        return float(w_to_dbm(rx_w))


class ConstantSpeedPropagationDelayModel:
    def __init__(self, settings, **attributes):
        unknown = set(attributes) - {"Speed"}
        if unknown:
            raise EngineError(f"ConstantSpeedPropagationDelayModel has no attribute(s) {sorted(unknown)}")
        self.speed = attributes.get("Speed", settings.SPEED_OF_LIGHT_M_S)

    def get_delay(self, a, b):
        return a.distance(b) / self.speed


LOSS_MODELS = {model.__name__: model for model in [FriisPropagationLossModel,
                                                    FixedRssLossModel,
                                                    ThreeLogDistancePropagationLossModel,
                                                    TwoRayGroundPropagationLossModel,
                                                    NakagamiPropagationLossModel]}

DELAY_MODELS = {ConstantSpeedPropagationDelayModel.__name__: ConstantSpeedPropagationDelayModel}


def _strip_namespace(name):
    return name[len("ns3::"):] if name.startswith("ns3::") else name


def create_loss_model(name, settings, rng=None, **attributes):
    model = LOSS_MODELS.get(_strip_namespace(name))
    if model is None:
        raise EngineError(f"Unknown propagation loss model {name}")
    return model(settings, rng, **attributes)


def create_delay_model(name, settings, **attributes):
    model = DELAY_MODELS.get(_strip_namespace(name))
    if model is None:
        raise EngineError(f"Unknown propagation delay model {name}")
    return model(settings, **attributes)
