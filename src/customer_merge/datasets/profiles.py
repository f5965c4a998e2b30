from __future__ import annotations

# Vocabulary for synthetic trade customer names in a Gulf distribution business.
BRAND_WORDS = [
    "Acme",
    "Falcon",
    "Gulf Pearl",
    "Desert Rose",
    "Blue Ocean",
    "Golden Sands",
    "Al Noor",
    "Al Safa",
    "Emirates Star",
    "Crescent",
    "Oasis",
    "Palm Tree",
    "Silver Line",
    "Red Sea",
    "Horizon",
    "Summit",
    "Nakheel Garden",
    "Arabian Peak",
    "Marina Bay",
    "Royal Camel",
    "Zenith",
    "Bright Way",
    "Green Valley",
    "Sky Bridge",
]

DESCRIPTOR_WORDS = [
    "Trading",
    "General Trading",
    "Electronics",
    "Supermarket",
    "Technologies",
    "Building Materials",
    "Auto Spare Parts",
    "Foodstuff",
    "Contracting",
    "Distribution",
    "Hardware Store",
    "Textiles",
]

LEGAL_SUFFIX_FORMS = ["LLC", "L.L.C", "L.L.C.", "Ltd", "Limited", "Inc", "Co", "FZE", "FZCO", "Est"]

LOCATION_WORDS = ["Dubai", "Sharjah", "Abu Dhabi", "Ajman", "DXB", "SHJ"]

STREET_WORDS = ["Sheikh Zayed Road", "Al Wasl Road", "Hamdan Street", "King Faisal Street", "Al Khail Road"]

# Long form -> short form used by the abbreviation variant.
ABBREVIATION_FORMS = {
    "International": "Intl",
    "General": "Gen",
    "Trading": "Trdg",
    "Distribution": "Dist",
    "Technologies": "Tech",
    "Electronics": "Elec",
    "Company": "Co",
    "Dubai": "DXB",
    "Sharjah": "SHJ",
}
