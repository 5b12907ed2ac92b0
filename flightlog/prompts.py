EXTRACTION_PROMPT = """Extract flight log entries from this scanned handwritten page.

OUTPUT FORMAT: Return ONLY a JSON array. Each entry must have these exact fields for CSV import:
{
  "date": "YYYY-MM-DD",
  "from": "ABC",
  "to": "XYZ",
  "aircraft_registration": "N12345",
  "passengers": "Name1; Name2",
  "flight_number": "123"
}

CRITICAL DATE HANDLING:
The DATE column has a SPECIAL FORMAT:
- The YEAR and MONTH appear ONCE at the TOP of the column (e.g., "1991 JUL" or "JUL 1998")
- Individual rows only show the DAY NUMBER (e.g., "25", "30", "3", "5")
- When a day number is SMALLER than the one in the previous row, the MONTH has rolled over
- Example: header "JUN", rows 25, 30, 3, 5, 9 -> Jun 25, Jun 30, Jul 3, Jul 5, Jul 9
- A new month token may also be written inline in the date column (e.g. "JUL", "AUG"); it
  starts that month from that row onward
- ALWAYS output full YYYY-MM-DD by combining the header year/month with each row's day

FIELD RULES:
- date: YYYY-MM-DD built from the column header year/month + the row's day
- from/to: 3-4 letter airport codes, UPPERCASE (e.g., PSP, CMH, BKL, ATW, ILG, TEB)
- aircraft_registration: US tail number starting with N (e.g., N12516, N404CB)
- passengers: names from the remarks column, semicolon-separated. Extract ALL names.
- flight_number: only if present in the FLT.NO. column
- Unknown or unreadable fields: null

READING HANDWRITING:
- Tail numbers are N + digits + optional trailing letters. Common confusions: 0/O, 1/I, 5/S, 8/B, 2/Z
- Airport codes are letters only; a digit inside an airport code is almost always a misread letter
- The REMARKS column holds passenger names and notes - keep only the names
- Include a row whenever it has FROM and TO airports, even if other fields are unclear
- Skip header rows and summary/total rows
- Keep entries in ORDER from top to bottom of the page

Return ONLY the JSON array, no markdown or explanation:"""

RESPONSE_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "date": {"type": "string", "nullable": True},
            "from": {"type": "string", "nullable": True},
            "to": {"type": "string", "nullable": True},
            "aircraft_registration": {"type": "string", "nullable": True},
            "passengers": {"type": "string", "nullable": True},
            "flight_number": {"type": "string", "nullable": True},
        },
    },
}

IDENTITY_ANALYSIS_PROMPT = """Analyze these passenger names from flight logs and identify which names likely refer to the same person.

INPUT: List of names with flight counts
OUTPUT: JSON groupings

For each group, identify:
1. The canonical (full) name
2. Abbreviations that match (e.g., "JD" = "JOHN DOE")
3. First name only matches (e.g., "JOHN" = "JOHN DOE")
4. Typos or OCR errors (e.g., "JONH DOE" = "JOHN DOE")
5. Confidence score (0.0-1.0)

Only use canonical names that appear in the KNOWN ENTITIES list. Do not invent people.

Return JSON format:
{
  "groups": [
    {
      "canonical_name": "JOHN DOE",
      "aliases": ["JD", "JOHN", "J. DOE"],
      "confidence": 0.8,
      "reasoning": "JD is initials, JOHN is first name only"
    }
  ]
}
"""
