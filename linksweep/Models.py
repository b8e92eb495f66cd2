"""
The propagation loss models a distance sweep can run with.

Each model is identified by its ordinal on the command line. What the model
needs on top of its name (a fixed receive power, an antenna height with the
matching node elevation) is carried by the enum member itself, so an unknown
ordinal is rejected here and never reaches the simulation engine.
"""
import math

from aenum import Enum, auto, IntEnum

from .errors import ConfigurationError
from .Positions import Position


class Dispatch(IntEnum):
    DEFAULT = auto()
    FIXED_SIGNAL = auto()
    GROUND_REFLECTION = auto()


class PropagationModel(Enum):
    _init_ = 'value fullname dispatch'

    FRIIS = 0, "FriisPropagationLossModel", Dispatch.DEFAULT
    FIXED_RSS = 1, "FixedRssLossModel", Dispatch.FIXED_SIGNAL
    THREE_LOG_DISTANCE = 2, "ThreeLogDistancePropagationLossModel", Dispatch.DEFAULT
    TWO_RAY_GROUND = 3, "TwoRayGroundPropagationLossModel", Dispatch.GROUND_REFLECTION
    NAKAGAMI = 4, "NakagamiPropagationLossModel", Dispatch.DEFAULT

    @classmethod
    def from_ordinal(cls, ordinal):
        if isinstance(ordinal, bool) or not isinstance(ordinal, int):
            raise ConfigurationError(f"Model index must be an integer, not {ordinal!r}")
        try:
            return cls(ordinal)
        except ValueError:
            raise ConfigurationError(f"Unknown propagation loss model index {ordinal}, "
                                     f"choose one of {[m.value for m in cls]}") from None


class PropagationModelSpec:
    # Dispatch -> (attribute name on the loss model, settings key of its value)
    PARAMETERS = {
        Dispatch.FIXED_SIGNAL: ("Rss", "FIXED_RSS_DBM"),
        Dispatch.GROUND_REFLECTION: ("HeightAboveZ", "ANTENNA_HEIGHT_M"),
    }

    def __init__(self, model: PropagationModel, parameter=None, z_offset=0.0):
        self.model = model
        self.parameter = parameter
        self.z_offset = z_offset

    @classmethod
    def from_ordinal(cls, ordinal, settings):
        model = PropagationModel.from_ordinal(ordinal)
        parameter = None
        z_offset = 0.0

        if model.dispatch in cls.PARAMETERS:
            name, key = cls.PARAMETERS[model.dispatch]
            value = settings[key]
            if value is None or not math.isfinite(value):
                raise ConfigurationError(f"{model.fullname} needs a finite {name}, not {value!r}")
            parameter = float(value)

        if model.dispatch is Dispatch.GROUND_REFLECTION:
            if parameter < 0:
                raise ConfigurationError(f"Antenna height must not be negative, not {parameter}")
            # The ground ray needs both antennas above the ground plane
            z_offset = parameter

        return cls(model, parameter, z_offset)

    @property
    def name(self):
        return self.model.fullname

    @property
    def dispatch(self):
        return self.model.dispatch

    def attributes(self):
        if self.parameter is None:
            return {}
        return {self.PARAMETERS[self.dispatch][0]: self.parameter}

    def apply(self, channel_builder):
        channel_builder.add_propagation_loss(self.name, **self.attributes())

    def positions(self, distance):
        return [Position(0.0, 0.0, self.z_offset), Position(distance, 0.0, self.z_offset)]

    def __eq__(self, other):
        return isinstance(other, PropagationModelSpec) and \
               (self.model, self.parameter, self.z_offset) == (other.model, other.parameter, other.z_offset)

    def __repr__(self):
        return f"PropagationModelSpec({self.name}, parameter={self.parameter}, z_offset={self.z_offset})"
