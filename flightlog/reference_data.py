# reference_data.py
# ---------------------------------------------------------------------
# Handwriting/OCR confusion tables and the airport allow-list used by the
# aggregator. Extend freely; the correction code never needs to change.

from typing import Dict, FrozenSet

# Character most likely meant when a DIGIT is expected (tail-number body)
LIKELY_DIGIT: Dict[str, str] = {
    "O": "0", "o": "0", "Q": "0", "D": "0",
    "I": "1", "i": "1", "l": "1", "L": "1", "|": "1",
    "Z": "2", "z": "2",
    "E": "3",
    "A": "4", "h": "4",
    "S": "5", "s": "5",
    "G": "6", "b": "6",
    "T": "7",
    "B": "8",
    "g": "9", "q": "9",
}

# Character most likely meant when a LETTER is expected (tail suffix, airport codes)
LIKELY_LETTER: Dict[str, str] = {
    "0": "O",
    "1": "I", "|": "I",
    "2": "Z",
    "3": "E",
    "4": "A",
    "5": "S",
    "6": "G",
    "8": "B",
}

# US civil registrations: N + digits + at most two trailing letters.
# I and O are never issued as suffix letters, so they are read as 1 and 0.
US_REGISTRATION_PREFIX = "N"
TAIL_SUFFIX_MAX_LETTERS = 2
TAIL_SUFFIX_EXCLUDED: FrozenSet[str] = frozenset({"I", "O"})

KNOWN_AIRPORTS: FrozenSet[str] = frozenset(
    {
        # ==== MAJOR HUBS ====
        "ATL", "LAX", "ORD", "DFW", "DEN", "JFK", "SFO", "SEA", "LAS", "MCO",
        "EWR", "CLT", "PHX", "IAH", "MIA", "BOS", "MSP", "FLL", "DTW", "PHL",

        # ==== SEEN IN SCANNED LOGS ====
        "PSP", "CMH", "BKL", "CLE", "MDW", "ATW", "ISP", "ILG", "TEB", "CPS",
        "RDU", "BRL", "LGR", "RNB",

        # ==== GENERAL AVIATION ====
        "VNY", "SMO", "HPN", "OPF", "FXE", "SDL", "APA", "FFZ",
    }
)
