"""
Vehicle Catalog
Production-year table for the makes and models we write guides for.
Read-only: the validator and the vehicles API consume it.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class YearRange:
    start: int
    end: int

    def contains(self, year: int) -> bool:
        return self.start <= year <= self.end


VEHICLE_PRODUCTION_YEARS: Dict[str, Dict[str, tuple]] = {
    # US / Japan / Korea
    "Toyota": {
        "Camry": (1983, 2024),
        "Corolla": (1966, 2024),
        "RAV4": (1996, 2024),
        "Highlander": (2001, 2024),
        "Tacoma": (1995, 2024),
        "Tundra": (2000, 2024),
        "Prius": (2001, 2024),
        "Sienna": (1998, 2024),
        "Yaris": (1999, 2020),
        "4Runner": (1984, 2024),
        "Avalon": (1995, 2022),
        "Land Cruiser": (1958, 2024),
    },
    "Honda": {
        "Civic": (1973, 2024),
        "Accord": (1976, 2024),
        "CR-V": (1997, 2024),
        "Pilot": (2003, 2024),
        "Odyssey": (1995, 2024),
        "Fit": (2007, 2020),
        "HR-V": (2016, 2024),
        "Ridgeline": (2006, 2024),
        "Element": (2003, 2011),
    },
    "Ford": {
        "F-150": (1975, 2024),
        "Escape": (2001, 2024),
        "Explorer": (1991, 2024),
        "Focus": (2000, 2018),
        "Fusion": (2006, 2020),
        "Mustang": (1965, 2024),
        "Edge": (2007, 2024),
        "Ranger": (1983, 2024),
        "Expedition": (1997, 2024),
        "Taurus": (1986, 2019),
        "F-250": (1999, 2024),
        "Transit": (2015, 2024),
    },
    "Chevrolet": {
        "Silverado": (1999, 2024),
        "Equinox": (2005, 2024),
        "Malibu": (1964, 2024),
        "Tahoe": (1995, 2024),
        "Suburban": (1935, 2024),
        "Impala": (1958, 2020),
        "Traverse": (2009, 2024),
        "Colorado": (2004, 2024),
        "Camaro": (1967, 2024),
        "Corvette": (1953, 2024),
    },
    "Nissan": {
        "Altima": (1993, 2024),
        "Rogue": (2008, 2024),
        "Sentra": (1982, 2024),
        "Versa": (2007, 2024),
        "Pathfinder": (1986, 2024),
        "Murano": (2003, 2024),
        "Frontier": (1998, 2024),
        "Maxima": (1981, 2023),
        "Titan": (2004, 2024),
    },
    "Hyundai": {
        "Elantra": (1991, 2024),
        "Sonata": (1989, 2024),
        "Tucson": (2005, 2024),
        "Santa Fe": (2001, 2024),
        "Kona": (2018, 2024),
        "Palisade": (2020, 2024),
    },
    "Kia": {
        "Optima": (2001, 2020),
        "K5": (2021, 2024),
        "Sorento": (2003, 2024),
        "Soul": (2010, 2024),
        "Sportage": (1995, 2024),
        "Telluride": (2020, 2024),
        "Forte": (2010, 2024),
    },
    "Mazda": {
        "3": (2004, 2024),
        "6": (2003, 2021),
        "CX-5": (2013, 2024),
        "CX-9": (2007, 2024),
        "MX-5": (1990, 2024),
    },
    "Subaru": {
        "Outback": (1995, 2024),
        "Forester": (1998, 2024),
        "Impreza": (1993, 2024),
        "Legacy": (1990, 2024),
        "Crosstrek": (2013, 2024),
        "WRX": (2015, 2024),
    },
    "Jeep": {
        "Wrangler": (1987, 2024),
        "Grand Cherokee": (1993, 2024),
        "Cherokee": (1974, 2023),
        "Compass": (2007, 2024),
    },
    "Ram": {
        "1500": (2011, 2024),
        "2500": (2011, 2024),
    },
    # European
    "BMW": {
        "3 Series": (1975, 2024),
        "5 Series": (1972, 2024),
        "X3": (2004, 2024),
        "X5": (2000, 2024),
    },
    "Volkswagen": {
        "Golf": (1974, 2024),
        "Jetta": (1980, 2024),
        "Passat": (1973, 2024),
        "Tiguan": (2008, 2024),
        "Beetle": (1938, 2019),
    },
    "Audi": {
        "A3": (1996, 2024),
        "A4": (1995, 2024),
        "A6": (1994, 2024),
        "Q5": (2009, 2024),
        "Q7": (2006, 2024),
    },
}

# Slug list used for the repair landing pages. Informational only, any task
# text is accepted by the pipeline.
VALID_TASKS = [
    "oil-change",
    "brake-pad-replacement",
    "brake-rotor-replacement",
    "alternator-replacement",
    "starter-replacement",
    "battery-replacement",
    "spark-plug-replacement",
    "radiator-replacement",
    "thermostat-replacement",
    "water-pump-replacement",
    "serpentine-belt-replacement",
    "timing-belt-replacement",
    "timing-chain-replacement",
    "cabin-air-filter-replacement",
    "engine-air-filter-replacement",
    "headlight-bulb-replacement",
    "tail-light-replacement",
    "fuel-filter-replacement",
    "fuel-pump-replacement",
    "clutch-replacement",
    "transmission-fluid-change",
    "coolant-flush",
    "power-steering-fluid-change",
    "wheel-bearing-replacement",
    "tie-rod-replacement",
    "ball-joint-replacement",
    "shock-absorber-replacement",
    "strut-replacement",
    "cv-axle-replacement",
    "oxygen-sensor-replacement",
    "mass-air-flow-sensor-replacement",
    "ignition-coil-replacement",
    "egr-valve-replacement",
    "catalytic-converter-replacement",
    "muffler-replacement",
    "windshield-wiper-replacement",
    "brake-fluid-flush",
    "differential-fluid-change",
    "turbo-replacement",
    "glow-plug-replacement",
    "drive-belt-replacement",
    "valve-cover-gasket-replacement",
    "head-gasket-replacement",
    "crankshaft-sensor-replacement",
    "camshaft-sensor-replacement",
]


def normalize_name(name: str) -> str:
    """
    Canonical token for make/model matching.
    "CR-V", "cr v", "Cr_V" -> "cr-v"
    """
    return re.sub(r"[\s\-_]+", "-", (name or "").strip().lower()).strip("-")


class VehicleCatalog:
    """Case- and separator-insensitive view over a production-year table"""

    def __init__(self, table: Optional[Dict[str, Dict[str, tuple]]] = None):
        table = table if table is not None else VEHICLE_PRODUCTION_YEARS
        self._display_makes: Dict[str, str] = {}
        self._display_models: Dict[str, Dict[str, str]] = {}
        self._years: Dict[str, Dict[str, YearRange]] = {}

        for make, models in table.items():
            make_key = normalize_name(make)
            self._display_makes[make_key] = make
            self._display_models[make_key] = {}
            self._years[make_key] = {}
            for model, (start, end) in models.items():
                model_key = normalize_name(model)
                self._display_models[make_key][model_key] = model
                self._years[make_key][model_key] = YearRange(start, end)

    def lookup(self, make: str) -> Optional[Dict[str, YearRange]]:
        """Returns {model -> YearRange} keyed by display model name, or None for unknown makes"""
        make_key = normalize_name(make)
        if make_key not in self._years:
            return None
        names = self._display_models[make_key]
        return {names[k]: r for k, r in self._years[make_key].items()}

    def year_range(self, make: str, model: str) -> Optional[YearRange]:
        models = self._years.get(normalize_name(make))
        if models is None:
            return None
        return models.get(normalize_name(model))

    def makes(self) -> List[str]:
        return sorted(self._display_makes.values())

    def models(self, make: str) -> List[str]:
        models = self.lookup(make)
        return sorted(models) if models else []

    def all_tasks(self) -> List[str]:
        return list(VALID_TASKS)

    def display_name(self, slug: str, kind: str) -> str:
        """
        Resolve a URL slug to its catalog spelling ("cr-v" -> "CR-V").
        Unknown slugs fall back to Title Case words.
        """
        key = normalize_name(slug)
        if kind == "make":
            if key in self._display_makes:
                return self._display_makes[key]
        else:
            for names in self._display_models.values():
                if key in names:
                    return names[key]

        return " ".join(w.capitalize() for w in slug.replace("-", " ").split())


vehicle_catalog = VehicleCatalog()
