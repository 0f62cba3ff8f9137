# evoting/reference_data.py
# Static administrative regions and elective positions for Kirinyaga County
from typing import List

from evoting.config import COUNTY_NAME

COUNTY = COUNTY_NAME

CONSTITUENCIES = [
    "Kirinyaga Central",
    "Kirinyaga East",
    "Mwea",
    "Gichugu",
    "Ndia",
]

# Ward names are only unique within a constituency
WARDS_BY_CONSTITUENCY = {
    "Kirinyaga Central": ["Kiamuturi", "Mutithi", "Kangai", "Thiba", "Wamumu"],
    "Kirinyaga East": ["Kanyeki-Inoi", "Kerugoya", "Inoi", "Mutonguni", "Kiamaciri"],
    "Mwea": ["Thiba", "Kangai", "Mutithi", "Wamumu", "Mwea"],
    "Gichugu": ["Ngariama", "Kanyekini", "Murinduko", "Gathigiriri", "Tebere"],
    "Ndia": ["Baragwi", "Njukiini", "Gichugu", "Mukure", "Kiaritha"],
}

GOVERNOR = "Governor"
WOMEN_REPRESENTATIVE = "Women Representative"
MP = "MP"
MCA = "MCA"

# Canonical ballot order
POSITIONS = [GOVERNOR, WOMEN_REPRESENTATIVE, MP, MCA]

SCOPE_COUNTY = "county"
SCOPE_CONSTITUENCY = "constituency"
SCOPE_WARD = "ward"

POSITION_SCOPES = {
    GOVERNOR: SCOPE_COUNTY,
    WOMEN_REPRESENTATIVE: SCOPE_COUNTY,
    MP: SCOPE_CONSTITUENCY,
    MCA: SCOPE_WARD,
}


def wards_of(constituency: str) -> List[str]:
    return list(WARDS_BY_CONSTITUENCY.get(constituency, []))


def is_valid_constituency(constituency: str) -> bool:
    return constituency in WARDS_BY_CONSTITUENCY


def is_valid_ward(constituency: str, ward: str) -> bool:
    return ward in WARDS_BY_CONSTITUENCY.get(constituency, [])


def all_wards() -> List[str]:
    seen = []
    for wards in WARDS_BY_CONSTITUENCY.values():
        for ward in wards:
            if ward not in seen:
                seen.append(ward)
    return seen


def constituencies_of_ward(ward: str) -> List[str]:
    return [c for c, wards in WARDS_BY_CONSTITUENCY.items() if ward in wards]


def scope_of(position: str) -> str:
    """Area level at which a position is contested; KeyError for unknown positions."""
    return POSITION_SCOPES[position]
