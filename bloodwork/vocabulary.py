"""Rule tables shared by the harvesters, the candidate filter and the glossary.

Everything here is data: ordered lists of ``(pattern, replacement)`` pairs,
stoplists and token sets. Control flow lives in ``naming.py``,
``filters.py`` and ``harvesters.py`` so the tables can be extended and tested
without touching it.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Value / range / flag tokens
# ---------------------------------------------------------------------------

NUMBER = r"[-+]?\d+(?:[.,]\d+)?"

STRICT_NUMBER_RE = re.compile(r"^[-+]?\d+(?:[.,]\d+)?$")
COMPARATOR_RE = re.compile(rf"^(<=|>=|=<|=>|≤|≥|<|>)\s*({NUMBER})$")
RANGE_RE = re.compile(rf"^\(?\s*({NUMBER})\s*(?:-|–|—|to|bis)\s*({NUMBER})\s*\)?$", re.IGNORECASE)
VALUE_TOKEN_RE = re.compile(rf"(?:^|\s)(?:[<>≤≥]=?\s*)?{NUMBER}(?=\s|$)")

FLAG_KEYWORDS: dict[str, str] = {
    "h": "high",
    "high": "high",
    "hi": "high",
    "hoch": "high",
    "+": "high",
    "↑": "high",
    "l": "low",
    "low": "low",
    "lo": "low",
    "niedrig": "low",
    "↓": "low",
    "n": "normal",
    "normal": "normal",
    "a": "abnormal",
    "abn": "abnormal",
    "abnormal": "abnormal",
    "*": "abnormal",
    "hh": "critical",
    "ll": "critical",
    "crit": "critical",
    "critical": "critical",
    "panic": "critical",
}

QUALITATIVE_VALUES: frozenset[str] = frozenset(
    {
        "positive",
        "negative",
        "pos",
        "neg",
        "positiv",
        "negativ",
        "detected",
        "not detected",
        "none detected",
        "nachweisbar",
        "nicht nachweisbar",
        "reactive",
        "non-reactive",
        "nonreactive",
        "non reactive",
        "present",
        "absent",
        "trace",
        "equivocal",
        "indeterminate",
        "borderline",
        "no growth",
        "growth",
        "normal flora",
        "clear",
        "cloudy",
        "hazy",
        "turbid",
        "yellow",
        "straw",
        "amber",
        "none seen",
        "few",
        "rare",
        "moderate",
        "many",
        "immune",
        "non-immune",
    }
)

PLACEHOLDER_VALUES: frozenset[str] = frozenset(
    {
        "pending",
        "n/a",
        "na",
        "n.a.",
        "canceled",
        "cancelled",
        "storniert",
        "see note",
        "see comment",
        "see below",
        "see report",
        "not performed",
        "not done",
        "not reported",
        "tnp",
        "qns",
        "folgt",
        "entfällt",
        "entfaellt",
        "siehe befund",
        "s. befund",
        "unknown",
        "-",
        "--",
        "---",
        "...",
        "?",
    }
)

# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

KNOWN_UNITS: frozenset[str] = frozenset(
    {
        "%",
        "g/dl",
        "g/l",
        "mg/dl",
        "mg/l",
        "ug/dl",
        "ug/l",
        "mcg/dl",
        "mcg/l",
        "ng/ml",
        "ng/dl",
        "ng/l",
        "pg/ml",
        "pg",
        "fl",
        "mmol/l",
        "umol/l",
        "nmol/l",
        "pmol/l",
        "mmol/mol",
        "meq/l",
        "mval/l",
        "u/l",
        "iu/l",
        "u/ml",
        "iu/ml",
        "miu/ml",
        "miu/l",
        "uiu/ml",
        "mu/l",
        "mu/ml",
        "uu/ml",
        "ukat/l",
        "ku/l",
        "au/ml",
        "gpt/l",
        "tpt/l",
        "g/l",
        "/nl",
        "/pl",
        "/ul",
        "/mcl",
        "thous/mcl",
        "thous/ul",
        "mill/mcl",
        "mill/ul",
        "million/ul",
        "cells/ul",
        "cells/mcl",
        "k/ul",
        "m/ul",
        "x10e3/ul",
        "x10e6/ul",
        "mm/h",
        "mm/hr",
        "mm/1h",
        "sec",
        "s",
        "ratio",
        "index",
        "calc",
        "titer",
        "ml/min",
        "ml/min/1.73m2",
        "ml/min/1,73m2",
        "mg/g",
        "mg/mmol",
        "g/24h",
        "mg/24h",
        "mosm/kg",
        "copies/ml",
        "/hpf",
        "/lpf",
    }
)

UNIT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(?:x\s*)?10(?:\^|\*|e)\d{1,2}/(?:u|mc|m|n)?l$"),
    re.compile(r"^[kmunpf]?(?:g|mol|u|iu|eq|kat)/(?:[dmunpk]?l|mcl|kg|g|mol|mmol|24h)$"),
)

UNIT_LEAK_RE = re.compile(
    r"(?:^|[\s(])(?:[mµμunpk]?(?:g|mol|iu|u|eq|l)/[a-z0-9µμ.]+|mmol|umol|µmol|nmol|pmol|mg|ng|pg|mcg|meq)(?=$|[\s)])",
    re.IGNORECASE,
)

# ---------------------------------------------------------------------------
# Administrative noise
# ---------------------------------------------------------------------------

ADMIN_STOPLIST: frozenset[str] = frozenset(
    {
        "page",
        "seite",
        "tel",
        "telefon",
        "phone",
        "fax",
        "email",
        "e-mail",
        "date",
        "datum",
        "time",
        "name",
        "patient",
        "patient name",
        "patient id",
        "dob",
        "date of birth",
        "geburtsdatum",
        "sex",
        "gender",
        "geschlecht",
        "age",
        "alter",
        "address",
        "adresse",
        "specimen",
        "material",
        "collected",
        "received",
        "reported",
        "ordered",
        "ordered by",
        "physician",
        "doctor",
        "arzt",
        "account",
        "account number",
        "result",
        "results",
        "ergebnis",
        "test",
        "test name",
        "analysis",
        "analyse",
        "parameter",
        "units",
        "unit",
        "einheit",
        "reference range",
        "reference interval",
        "referenzbereich",
        "normbereich",
        "flag",
        "comment",
        "comments",
        "kommentar",
        "note",
        "notes",
        "status",
        "final",
        "lab",
        "laboratory",
        "labor",
        "order",
        "auftrag",
        "auftragsnummer",
        "barcode",
        "id",
        "mrn",
        "fasting",
    }
)

# (label, pattern) pairs; the label is only used for debug logging.
ADMIN_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("contact", re.compile(r"\b(?:tel|telefon|fax|phone|e-?mail)\b|www\.|https?://|@", re.IGNORECASE)),
    (
        "identity",
        re.compile(
            r"\b(?:patient|geburts\w*|birth|dob|ss#|ssn|account|accession|mrn|medical record|insurance|"
            r"versicherung|sex(?!\s*hormone)|gender|geschlecht|alter)\b",
            re.IGNORECASE,
        ),
    ),
    ("provider", re.compile(r"\b(?:physician|doctor|provider|ordering|ordered by|einsender|dr\.)", re.IGNORECASE)),
    (
        "address",
        re.compile(
            r"\b(?:street|str\.|strasse|straße|road|avenue|ave\.|suite|p\.?\s?o\.? box|zip|postal)|\b\d{5}\s+[A-Z][a-z]+",
            re.IGNORECASE,
        ),
    ),
    (
        "timestamp",
        re.compile(
            r"\b(?:date|datum|uhrzeit|collected|received|reported|entered|printed|eingang|ausgang)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "guideline",
        re.compile(
            r"\b(?:guidelines?|recommend\w*|according to|interpretation|please|consult|should be|"
            r"is associated|risk of|diagnosis of|treatment|therapy|empfehlung|bitte)\b",
            re.IGNORECASE,
        ),
    ),
    ("comment", re.compile(r"^(?:comments?|notes?|remarks?|kommentar|hinweis|befund|bemerkung)\b", re.IGNORECASE)),
    (
        "banner",
        re.compile(
            r"^[-=*_#\s]{3,}$|^(?:section|department|abteilung|page|seite)\b|^(?:end of report|final report|continued|fortsetzung)",
            re.IGNORECASE,
        ),
    ),
    ("lab", re.compile(r"\b(?:labcorp|quest diagnostics|laboratory corporation|limbach|synlab)\b", re.IGNORECASE)),
    ("order", re.compile(r"\b(?:specimen|control|barcode|order number|auftrag\w*)\b", re.IGNORECASE)),
)

BARE_PAIR_RE = re.compile(r"^[A-Za-z]+,\s*[A-Za-z]+$")

# ---------------------------------------------------------------------------
# Analyte vocabulary
# ---------------------------------------------------------------------------

ANALYTE_VOCAB_RE = re.compile(
    r"\b(?:hemoglobin|haemoglobin|hematocrit|haematocrit|hct|hgb|hb|hba1c|a1c|rbc|wbc|erythrocytes?|"
    r"leukocytes?|leucocytes?|platelets?|thrombocytes?|neutrophils?|lymphocytes?|monocytes?|eosinophils?|"
    r"basophils?|granulocytes?|reticulocytes?|mcv|mch|mchc|rdw|mpv|glucose|insulin|cholesterol|hdl|ldl|vldl|"
    r"triglycerides?|lipoprotein|apolipoprotein|creatinine|urea|bun|e?gfr|uric acid|sodium|potassium|"
    r"chloride|calcium|magnesium|phosphorus|phosphate|bicarbonate|co2|albumin|globulin|protein|bilirubin|"
    r"alt|ast|sgpt|sgot|ggt|gamma[- ]?gt|alkaline phosphatase|alp|ldh|ck|ck-mb|creatine kinase|amylase|"
    r"lipase|crp|c-reactive|esr|ferritin|iron|transferrin|tibc|vitamin|folate|folic|b12|cobalamin|tsh|"
    r"t3|t4|ft3|ft4|thyroxine|triiodothyronine|thyroglobulin|tpo|cortisol|testosterone|estradiol|"
    r"progesterone|dhea|dhea-s|shbg|lh|fsh|prolactin|psa|igf-1|homocysteine|fibrinogen|inr|ptt|aptt|d-dimer|"
    r"zinc|copper|selenium|culture|antibody|antibodies|antigen|ab|ag|igg|igm|iga|ige|hepatitis|hep|hiv|rpr|"
    r"syphilis|pcr|screen|titer|urine|ph|specific gravity|ketones|nitrite|bacteria|casts|crystals|epithelial|"
    r"count|ratio|saturation|microalbumin|cystatin|ana|rheumatoid|troponin|bnp|nt-probnp|lactate|ammonia|"
    r"osmolality|anion gap)\b",
    re.IGNORECASE,
)

NARRATIVE_TEST_RE = re.compile(
    r"\b(?:culture|screen|antigen|antibody|antibodies|pcr|test|swab|panel|titer|rpr|hiv|hepatitis)\b",
    re.IGNORECASE,
)

CATEGORY_HEADERS: frozenset[str] = frozenset(
    {
        "hematology",
        "haematology",
        "chemistry",
        "clinical chemistry",
        "blood count",
        "small blood count",
        "complete blood count",
        "cbc",
        "cbc with differential",
        "differential",
        "differential blood count",
        "lipid panel",
        "lipid profile",
        "lipids",
        "urinalysis",
        "serology",
        "immunology",
        "endocrinology",
        "hormones",
        "electrolytes",
        "liver function",
        "liver panel",
        "kidney function",
        "renal panel",
        "thyroid",
        "thyroid panel",
        "metabolic panel",
        "basic metabolic panel",
        "comprehensive metabolic panel",
        "cmp",
        "bmp",
        "vitamins",
        "coagulation",
        "iron studies",
        "inflammation",
        "enzymes",
        "proteins",
        "minerals",
        "trace elements",
        "test results",
    }
)

# Second, looser reject list used only by the fallback glossary classifier.
LOOSE_REJECT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\b(?:result|results|value|values|comments?|notes?|remarks?|see|report|reference|interval|method|"
        r"specimen|sample|page|date|time|laboratory|physician|patient|interpretation|guidelines?|"
        r"recommend\w*|please|should|the|is|are|was|if)\b",
        re.IGNORECASE,
    ),
    re.compile(r"^\W"),
    re.compile(r"\d{4,}"),
    re.compile(r"[:;!?]"),
)

# ---------------------------------------------------------------------------
# Names: translation, canonical rules, qualifiers
# ---------------------------------------------------------------------------

# Ordered: longer / more specific phrases first.
TRANSLATIONS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), replacement)
    for pattern, replacement in (
        (r"\bgro(?:ß|ss)es blutbild\b", "Complete Blood Count"),
        (r"\bkleines blutbild\b", "Small Blood Count"),
        (r"\bblutbild\b", "Blood Count"),
        (r"\bhdl[- ]cholesterin\b", "HDL Cholesterol"),
        (r"\bldl[- ]cholesterin\b", "LDL Cholesterol"),
        (r"\bgesamt[- ]cholesterin\b", "Total Cholesterol"),
        (r"\bcholesterin\b", "Cholesterol"),
        (r"\bbilirubin,? gesamt\b", "Total Bilirubin"),
        (r"\bgesamt[- ]?(?:eiwei(?:ß|ss)|protein)\b", "Total Protein"),
        (r"\beiwei(?:ß|ss)\b", "Protein"),
        (r"\balkalische phosphatase\b", "Alkaline Phosphatase"),
        (r"\bharns(?:ä|ae|a)ure\b", "Uric Acid"),
        (r"\bharnstoff\b", "Urea"),
        (r"\bblutzucker\b", "Blood Glucose"),
        (r"\bblutsenkung\b", "ESR"),
        (r"\bleukozyten\b", "Leukocytes"),
        (r"\berythrozyten\b", "Erythrocytes"),
        (r"\bthrombozyten\b", "Platelets"),
        (r"\bneutrophile\b", "Neutrophils"),
        (r"\blymphozyten\b", "Lymphocytes"),
        (r"\bmonozyten\b", "Monocytes"),
        (r"\beosinophile\b", "Eosinophils"),
        (r"\bbasophile\b", "Basophils"),
        (r"\bh(?:ä|ae)moglobin\b", "Hemoglobin"),
        (r"\bh(?:ä|ae)matokrit\b", "Hematocrit"),
        (r"\bkreatinin\b", "Creatinine"),
        (r"\bglukose\b", "Glucose"),
        (r"\btriglyceride\b", "Triglycerides"),
        (r"\bnatrium\b", "Sodium"),
        (r"\bkalium\b", "Potassium"),
        (r"\bchlorid\b", "Chloride"),
        (r"\bkalzium\b", "Calcium"),
        (r"\beisen\b", "Iron"),
        (r"\bn(?:ü|ue)chtern\b", "Fasting"),
        (r"\bfreies\b", "Free"),
        (r"\bgesamt\b", "Total"),
        (r"\burin\b", "Urine"),
        (r"\bharn\b", "Urine"),
    )
)

NON_ENGLISH_TOKENS: frozenset[str] = frozenset(
    {
        "leukozyten",
        "erythrozyten",
        "thrombozyten",
        "kreatinin",
        "harnstoff",
        "harnsaure",
        "cholesterin",
        "natrium",
        "kalium",
        "chlorid",
        "kalzium",
        "eisen",
        "eiweiss",
        "gesamt",
        "freies",
        "freie",
        "blutbild",
        "neutrophile",
        "lymphozyten",
        "monozyten",
        "eosinophile",
        "basophile",
        "hamatokrit",
        "haematokrit",
        "hamoglobin",
        "glukose",
        "nuchtern",
        "befund",
        "untersuchung",
        "wert",
        "ergebnis",
        "einheit",
        "referenzbereich",
        "und",
        "der",
        "die",
        "das",
        "mit",
    }
)

ENGLISH_NAME_RE = re.compile(r"^[A-Za-z0-9 ,./%()+\-'#&:]+$")

CANONICAL_NAME_RULES: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), canonical)
    for pattern, canonical in (
        (
            r"(?:alt|sgpt|gpt|alat|alanine\s+(?:amino)?transferase|alanine\s+transaminase)"
            r"(?:\s*\((?:sgpt|gpt|alt|alat)\))?",
            "ALT (SGPT)",
        ),
        (
            r"(?:ast|sgot|got|asat|aspartate\s+(?:amino)?transferase|aspartate\s+transaminase)"
            r"(?:\s*\((?:sgot|got|ast|asat)\))?",
            "AST (SGOT)",
        ),
        (r"(?:ggt|gamma[\s-]?gt|y-gt|gamma[\s-]?glutamyl\s*transferase|gamma[\s-]?glutamyltransferase)", "GGT"),
        (
            r"(?:hba1c|hb\s*a1c|hemoglobin\s*a1c|haemoglobin\s*a1c|glycated\s+hemoglobin|glycohemoglobin|a1c)",
            "Hemoglobin A1c",
        ),
        (r"(?:glucose|blood\s+glucose|glucose,?\s*(?:serum|plasma|fasting)|fasting\s+glucose|blood\s+sugar)", "Glucose"),
        (r"(?:tsh|tsh\s+basal|basal\s+tsh|thyroid\s+stimulating\s+hormone|thyrotropin)", "TSH"),
        (r"(?:ft4|free\s+t4|t4,?\s*free|free\s+thyroxine)", "Free T4"),
        (r"(?:ft3|free\s+t3|t3,?\s*free|free\s+triiodothyronine)", "Free T3"),
        (r"(?:cholesterol|total\s+cholesterol|cholesterol,?\s*total)", "Total Cholesterol"),
        (r"(?:hdl|hdl[\s-]*c|hdl\s+cholesterol|cholesterol,?\s*hdl)", "HDL Cholesterol"),
        (
            r"(?:ldl|ldl[\s-]*c|ldl\s+cholesterol|cholesterol,?\s*ldl|ldl[\s-]chol(?:esterol)?\s+calc(?:ulated)?)",
            "LDL Cholesterol",
        ),
        (r"(?:triglycerides?|tg)", "Triglycerides"),
        (r"(?:hemoglobin|haemoglobin|hgb|hb)", "Hemoglobin"),
        (r"(?:hematocrit|haematocrit|hct|hkt)", "Hematocrit"),
        (
            r"(?:wbc|white\s+blood\s+cells?|white\s+blood\s+cell\s+count|leukocytes|leucocytes|leukocyte\s+count)",
            "Leukocytes",
        ),
        (r"(?:rbc|red\s+blood\s+cells?|red\s+blood\s+cell\s+count|erythrocytes|erythrocyte\s+count)", "Erythrocytes"),
        (r"(?:plt|platelets?|platelet\s+count|thrombocytes)", "Platelets"),
        (r"(?:creatinine|creat|creatinine,?\s*serum)", "Creatinine"),
        (r"(?:crp|c[\s-]reactive\s+protein)", "C-Reactive Protein"),
        (
            r"(?:vitamin\s+d|25[\s-]*(?:oh|hydroxy)[\s-]*vitamin\s+d3?|vitamin\s+d,?\s*25[\s-]*(?:oh|hydroxy)\w*|"
            r"vitamin\s+d\s*\(25[\s-]*oh\)|25[\s-]oh[\s-]d3?)",
            "Vitamin D (25-OH)",
        ),
        (r"(?:vitamin\s+b12|b12|cobalamin)", "Vitamin B12"),
        (r"(?:egfr|e-gfr|estimated\s+gfr|gfr,?\s*estimated)", "eGFR"),
    )
)

QUALIFIER_RE = re.compile(
    r"\s*\((?:eb|edta|cit|citrate|heparin|li[\s-]?hep|serum|plasma|blood|whole\s+blood|vollblut|urine|"
    r"spot\s+urine|venous|capillary|kapillar|calc\.?|calculated|berechnet|hplc|ifcc|ngsp|dcct|clia|eclia|"
    r"cmia|eia|elisa|photometric|photometrisch|enzymatic|enzymatisch|immunoassay|turbidimetric|"
    r"gen\.?\s*\d+|\d+(?:st|nd|rd|th)\s+gen(?:eration)?|[ivx]{1,4})\)\s*$",
    re.IGNORECASE,
)
