"""Classification constants and keyword tables.

This module defines the Polish keyword sets used to classify offer text into
sections and to guess the insurance product type. The tables are read-only
so a single instance can be shared by concurrent classifiers.
"""

from types import MappingProxyType
from typing import Mapping, Tuple

from offer_ingest.models.section_models import SectionType

# Iteration order is the tie-break order: the first type reaching the best
# ratio wins.
SECTION_KEYWORDS: Mapping[SectionType, Tuple[str, ...]] = MappingProxyType({
    SectionType.INSURED: (
        "ubezpieczony", "wiek", "imię", "nazwisko", "data urodzenia", "pesel",
    ),
    SectionType.BASE_CONTRACT: (
        "umowa podstawowa", "życie", "on", "cu", "główna", "podstawowa ochrona",
    ),
    SectionType.ADDITIONAL_CONTRACT: (
        "umowa dodatkowa", "rozszerzenie", "ab14", "yo14", "nw", "ns", "szpital", "nowotwór",
    ),
    SectionType.ASSISTANCE: (
        "assistance", "pomoc", "asysta", "wsparcie", "medicover", "interwencja",
    ),
    SectionType.PREMIUM: (
        "składka", "opłata", "koszt", "cena", "zł", "pln", "miesięczna", "roczna",
    ),
    SectionType.DISCOUNT: (
        "zniżka", "rabat", "upust", "promocja", "więcej za mniej", "zlecenie",
    ),
    SectionType.DURATION: (
        "okres", "czas trwania", "od", "do", "data rozpoczęcia", "data zakończenia", "miesięcy", "lat",
    ),
})

PRODUCT_TYPE_KEYWORDS: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "life_insurance": ("na życie", "ubezpieczenie na życie", "życiowe", "terminowe", "kapitał"),
    "health_insurance": ("zdrowot", "leczenie", "medycz", "hospitalizacja", "opieka zdrowotna"),
    "accident_insurance": ("wypadk", "nw", "następstw nieszczęśliwych", "uszczerbek", "kontuzja"),
    "travel_insurance": ("podróż", "turystycz", "travel", "koszty leczenia za granicą", "assistance podróżne"),
    "property_insurance": ("mieszkanie", "dom", "majątk", "nieruchomość", "pożar"),
    "auto_insurance": ("oc", "ac", "samochód", "pojazd", "komunikacyjn"),
})

SNIPPET_ELLIPSIS = "..."

# Type hint attached to the synthetic whole-page candidate in block mode
PAGE_BLOCK_TYPE = "page"
DEFAULT_BLOCK_TYPE = "text"

# Block-mode confidence shaping
UNMATCHED_BLOCK_CONFIDENCE = 0.2
MATCHED_BLOCK_BASE_CONFIDENCE = 0.4
MAX_BLOCK_CONFIDENCE = 0.9

# Extraction quality grading on identified-section ratio
HIGH_IDENTIFIED_RATIO = 0.7
MEDIUM_IDENTIFIED_RATIO = 0.4
