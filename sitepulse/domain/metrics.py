"""
Metric catalog.

The catalog is the closed vocabulary of telemetry quantities the engine
understands. Every key is a ``module.name`` string bound to:

- the monitoring :class:`Module` it belongs to (energy, air, water),
- its measurement unit, and
- its :class:`AggregationKind`, which decides whether values from several
  devices (or several sites) are summed or averaged.

Keys arriving from the metric store are resolved through
:meth:`MetricKey.parse`, which also understands the legacy aliases some
older gateways still publish (``CO2``, ``temp`` ...). Anything that does not
resolve is not part of the catalog and is never evaluated.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple


class Module(str, Enum):
    """
    Independently enabled monitoring domain of a site.

    Members
    -------
    ENERGY : str
        Electrical power and consumption.
    AIR : str
        Indoor air quality and comfort (CO2, temperature, humidity ...).
    WATER : str
        Water flow and consumption.
    """

    ENERGY = "energy"
    AIR = "air"
    WATER = "water"


class AggregationKind(str, Enum):
    """
    How values of one metric combine across devices and sites.

    Members
    -------
    ADDITIVE : str
        Values are summed (power, consumption).
    INSTANTANEOUS : str
        Values are averaged (temperature, CO2, humidity, flow rate).
    """

    ADDITIVE = "additive"
    INSTANTANEOUS = "instantaneous"


class MetricKey(str, Enum):
    """
    Closed enumeration of supported metric keys.

    The enum value is the wire identifier used by the metric store. Module,
    unit and aggregation kind are looked up from the catalog table below.
    """

    POWER_KW = "energy.power_kw"
    HVAC_KW = "energy.hvac_kw"
    LIGHTING_KW = "energy.lighting_kw"
    PLUGS_KW = "energy.plugs_kw"
    ACTIVE_ENERGY = "energy.active_energy"
    DAILY_ENERGY_KWH = "energy.daily_kwh"

    CO2 = "iaq.co2"
    VOC = "iaq.voc"
    PM25 = "iaq.pm25"
    PM10 = "iaq.pm10"
    TEMPERATURE = "env.temperature"
    HUMIDITY = "env.humidity"

    FLOW_RATE = "water.flow_rate"
    LEAK_FLOW_LH = "water.flow_lh"
    DAILY_WATER_LITERS = "water.daily_liters"

    @property
    def module(self) -> Module:
        return _CATALOG[self][0]

    @property
    def unit(self) -> str:
        return _CATALOG[self][1]

    @property
    def kind(self) -> AggregationKind:
        return _CATALOG[self][2]

    @property
    def is_additive(self) -> bool:
        return self.kind is AggregationKind.ADDITIVE

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["MetricKey"]:
        """
        Resolve a wire identifier (or legacy alias) to a catalog key.

        Parameters
        ----------
        text
            Metric identifier as reported by the store. Matching is
            case-sensitive for canonical keys; aliases are listed explicitly.

        Returns
        -------
        MetricKey or None
            The catalog member, or None if the identifier is unknown.
        """
        if not text:
            return None
        try:
            return cls(text)
        except ValueError:
            return _ALIASES.get(text)


_CATALOG: Dict[MetricKey, Tuple[Module, str, AggregationKind]] = {
    MetricKey.POWER_KW: (Module.ENERGY, "kW", AggregationKind.ADDITIVE),
    MetricKey.HVAC_KW: (Module.ENERGY, "kW", AggregationKind.ADDITIVE),
    MetricKey.LIGHTING_KW: (Module.ENERGY, "kW", AggregationKind.ADDITIVE),
    MetricKey.PLUGS_KW: (Module.ENERGY, "kW", AggregationKind.ADDITIVE),
    MetricKey.ACTIVE_ENERGY: (Module.ENERGY, "kWh", AggregationKind.ADDITIVE),
    MetricKey.DAILY_ENERGY_KWH: (Module.ENERGY, "kWh", AggregationKind.ADDITIVE),
    MetricKey.CO2: (Module.AIR, "ppm", AggregationKind.INSTANTANEOUS),
    MetricKey.VOC: (Module.AIR, "ppb", AggregationKind.INSTANTANEOUS),
    MetricKey.PM25: (Module.AIR, "ug/m3", AggregationKind.INSTANTANEOUS),
    MetricKey.PM10: (Module.AIR, "ug/m3", AggregationKind.INSTANTANEOUS),
    MetricKey.TEMPERATURE: (Module.AIR, "C", AggregationKind.INSTANTANEOUS),
    MetricKey.HUMIDITY: (Module.AIR, "%", AggregationKind.INSTANTANEOUS),
    MetricKey.FLOW_RATE: (Module.WATER, "L/h", AggregationKind.INSTANTANEOUS),
    MetricKey.LEAK_FLOW_LH: (Module.WATER, "L/h", AggregationKind.INSTANTANEOUS),
    MetricKey.DAILY_WATER_LITERS: (Module.WATER, "L", AggregationKind.ADDITIVE),
}

# Identifiers published by older gateway firmware.
_ALIASES: Dict[str, MetricKey] = {
    "CO2": MetricKey.CO2,
    "co2": MetricKey.CO2,
    "temp": MetricKey.TEMPERATURE,
    "temperature": MetricKey.TEMPERATURE,
    "humidity": MetricKey.HUMIDITY,
    "voc": MetricKey.VOC,
}

# Metric whose presence and freshness define whether a module is live.
DEFINING_METRIC: Dict[Module, MetricKey] = {
    Module.ENERGY: MetricKey.POWER_KW,
    Module.AIR: MetricKey.CO2,
    Module.WATER: MetricKey.FLOW_RATE,
}


def keys_for_module(module: Module) -> Tuple[MetricKey, ...]:
    """Return all catalog keys owned by ``module`` in declaration order."""
    return tuple(k for k in MetricKey if k.module is module)
