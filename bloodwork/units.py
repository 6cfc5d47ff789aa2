"""Unit standardization by (analyte, unit) rule lookup.

Numeric conversions keep an ``original`` snapshot of the source reading so
the conversion can be audited and reversed; textual equivalents only relabel
the unit.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any

from bloodwork.naming import canonical_key, rewrite_measurement_name, unit_key

logger = logging.getLogger(__name__)

DECIMALS = 6


@dataclass(frozen=True)
class UnitConversion:
    analytes: tuple[str, ...]
    source_units: tuple[str, ...]
    source_spelling: str
    target_unit: str
    factor: float
    offset: float = 0.0

    def apply(self, value: float) -> float:
        return round(value * self.factor + self.offset, DECIMALS)

    def invert(self, value: float) -> float:
        return (value - self.offset) / self.factor


@dataclass(frozen=True)
class UnitEquivalent:
    analytes: tuple[str, ...]
    source_units: tuple[str, ...]
    target_unit: str


_LIPIDS = ("total cholesterol", "hdl cholesterol", "ldl cholesterol")
_CELL_COUNTS = ("leukocytes", "platelets", "neutrophils", "lymphocytes", "monocytes", "eosinophils", "basophils")

CONVERSIONS: tuple[UnitConversion, ...] = (
    UnitConversion(("glucose",), ("mmol/l",), "mmol/L", "mg/dL", 18.0182),
    UnitConversion(("hemoglobin a1c",), ("mmol/mol",), "mmol/mol", "%", 0.09148, 2.152),
    UnitConversion(_LIPIDS, ("mmol/l",), "mmol/L", "mg/dL", 38.67),
    UnitConversion(("triglycerides",), ("mmol/l",), "mmol/L", "mg/dL", 88.57),
    UnitConversion(("creatinine",), ("umol/l",), "umol/L", "mg/dL", 1 / 88.42),
    UnitConversion(("hemoglobin",), ("g/l",), "g/L", "g/dL", 0.1),
    UnitConversion(("hemoglobin",), ("mmol/l",), "mmol/L", "g/dL", 1.611),
    UnitConversion(("vitamin d 25 oh",), ("nmol/l",), "nmol/L", "ng/mL", 0.4006),
    UnitConversion(("calcium",), ("mmol/l",), "mmol/L", "mg/dL", 4.008),
    UnitConversion(("alt sgpt", "ast sgot", "ggt"), ("ukat/l",), "ukat/L", "U/L", 60.0),
)

EQUIVALENTS: tuple[UnitEquivalent, ...] = (
    UnitEquivalent(("tsh",), ("mu/l", "miu/l", "uiu/ml", "uu/ml", "mu/ml"), "uIU/mL"),
    UnitEquivalent(("alt sgpt", "ast sgot", "ggt"), ("u/l", "iu/l"), "U/L"),
    UnitEquivalent(_CELL_COUNTS, ("gpt/l", "g/l", "/nl", "10^9/l", "10*9/l", "k/ul", "x10e3/ul", "thous/ul", "thous/mcl"), "10^3/uL"),
    UnitEquivalent(("erythrocytes",), ("tpt/l", "t/l", "/pl", "10^12/l", "10*12/l", "m/ul", "x10e6/ul", "mill/ul", "mill/mcl"), "10^6/uL"),
)

# Never converted: the source unit does not identify the reading unambiguously.
AMBIGUOUS_UNITS: dict[str, tuple[str, ...]] = {
    "hemoglobin a1c": ("mmol/l",),
}


def analyte_key(name: str) -> str:
    return canonical_key(rewrite_measurement_name(name or ""))


def find_conversion(name: str, unit: str) -> UnitConversion | None:
    key, source = analyte_key(name), unit_key(unit)
    for conversion in CONVERSIONS:
        if key in conversion.analytes and source in conversion.source_units:
            return conversion
    return None


def find_equivalent(name: str, unit: str) -> UnitEquivalent | None:
    key, source = analyte_key(name), unit_key(unit)
    for equivalent in EQUIVALENTS:
        if key in equivalent.analytes and source in equivalent.source_units:
            return equivalent
    return None


def is_ambiguous(name: str, unit: str) -> bool:
    return unit_key(unit) in AMBIGUOUS_UNITS.get(analyte_key(name), ())


def invert_value(name: str, unit: str, value: float) -> float:
    """Undo the conversion that ``standardize_measurement`` applied to a ``unit`` reading of ``name``."""
    conversion = find_conversion(name, unit)
    if conversion is None:
        return value
    return conversion.invert(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def standardize_measurement(measurement: dict[str, Any]) -> dict[str, Any]:
    unit = measurement.get("unit")
    name = measurement.get("name", "")
    if not isinstance(unit, str) or not unit.strip() or is_ambiguous(name, unit):
        return measurement

    equivalent = find_equivalent(name, unit)
    if equivalent is not None:
        relabeled = dict(measurement)
        relabeled["unit"] = equivalent.target_unit
        return relabeled

    conversion = find_conversion(name, unit)
    if conversion is None:
        return measurement

    standardized = dict(measurement)
    value = measurement.get("value")
    if not _is_number(value):
        standardized["unit"] = conversion.source_spelling
        return standardized

    original: dict[str, Any] = {"value": value, "unit": conversion.source_spelling}
    standardized["value"] = conversion.apply(value)
    standardized["unit"] = conversion.target_unit
    reference_range = measurement.get("referenceRange")
    if isinstance(reference_range, dict) and reference_range:
        original["referenceRange"] = copy.deepcopy(reference_range)
        standardized["referenceRange"] = {
            bound: conversion.apply(limit) for bound, limit in reference_range.items() if _is_number(limit)
        }
    standardized["original"] = original
    logger.debug("Converted %s from %s to %s", name, conversion.source_spelling, conversion.target_unit)
    return standardized


def standardize_measurements(measurements: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [standardize_measurement(measurement) for measurement in measurements]
