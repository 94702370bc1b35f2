"""Travel-time lookups, routing oracles and day sequencing."""

from .cache import TravelTimeCache
from .oracles import ORToolsRouteOracle, OSRMRouteOracle, OSRMTravelTimeOracle
from .osrm_client import OSRMClient
from .sequencer import RouteSequencer, SequencedDay, sequence_day
from .travel import TravelTimeService

__all__ = [
    "TravelTimeCache",
    "TravelTimeService",
    "OSRMClient",
    "OSRMTravelTimeOracle",
    "OSRMRouteOracle",
    "ORToolsRouteOracle",
    "RouteSequencer",
    "SequencedDay",
    "sequence_day",
]
