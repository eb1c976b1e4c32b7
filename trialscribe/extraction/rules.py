from __future__ import annotations

"""
Deterministic turn formatting, profile extraction and key-moment selection.

Design intent:
- Serve as the offline engine and as the fallback when the local LLM is unavailable.
- Prefer omission over guessing: only explicit, non-negated statements populate the profile.
- Quotes are verbatim sentences so moment times can be derived from transcript offsets.
"""

import re
from collections import Counter
from typing import Optional, Sequence

from trialscribe.asr.formatting import NARRATOR, parse_turns, split_sentences
from trialscribe.internal_core.contracts import KeyMoment, Location, PatientProfile, Turn
from trialscribe.trials.diagnosis import DIAGNOSIS_KEYWORDS

DOCTOR = "Doctor"
PATIENT = "Patient"
MAX_MOMENTS = 8

_CLINICIAN_RE = re.compile(
    r"\b(how|what|when|where|why|can you|could you|tell me|let me|let's|i'm dr|i'll be|"
    r"we'll need|i want to|i'd like to|have you|are you|do you|any history|thank you for sharing)\b|\?",
    flags=re.IGNORECASE,
)
_PATIENT_RE = re.compile(
    r"\b(i|i'm|i've|my|me|feel|feeling|yes|no|yeah|well|that's me|thank you)\b",
    flags=re.IGNORECASE,
)
_NEGATION_RE = re.compile(
    r"\b(no|not|never|denies|denied|without|haven't|hasn't|don't|doesn't)\b",
    flags=re.IGNORECASE,
)

_AGE_RES = (
    re.compile(r"\b(\d{1,3})[- ](?:years?|yrs?)[- ]old\b", re.IGNORECASE),
    re.compile(r"\b(?:i'm|i am|aged?)\s+(\d{1,3})\b(?!\s*(?:mg|%|am|pm|minutes?|hours?|days?|weeks?|months?))", re.IGNORECASE),
)
_FEMALE_RE = re.compile(r"\b(mrs|ms|miss|woman|female|she is|she's)\b", re.IGNORECASE)
_MALE_RE = re.compile(r"\b(mr|man|male|he is|he's)\b", re.IGNORECASE)
_ALLERGY_RE = re.compile(r"\ballergic to ([a-z][a-z\- ]{1,40}?)(?=[.,;!?]| and\b|$)", re.IGNORECASE)
_HONORIFIC_NAME_RE = re.compile(r"\b(?:Mr|Mrs|Ms|Dr)\.\s*[A-Z][A-Za-z\-]*")
_DURATION_RE = re.compile(
    r"\b(\d+|a|one|two|three|four|five|six|a couple of|a few)\s+(?:day|days|week|weeks|month|months|year|years)\b",
    re.IGNORECASE,
)

_SYMPTOM_TERMS: list[tuple[str, tuple[str, ...]]] = [
    ("breast lump", ("lump in my breast", "breast lump", "lump")),
    ("pain", ("pain", "hurts", "aching")),
    ("tenderness", ("tenderness", "tender")),
    ("skin dimpling", ("dimpled", "dimpling")),
    ("swelling", ("swelling", "swollen")),
    ("nipple discharge", ("nipple discharge",)),
    ("shortness of breath", ("short of breath", "shortness of breath", "breathless")),
    ("chronic cough", ("nagging cough", "chronic cough", "cough")),
    ("wheezing", ("wheezing", "wheeze")),
    ("fatigue", ("tired", "fatigue", "exhausted", "no energy")),
    ("increased thirst", ("increased thirst", "thirsty")),
    ("frequent urination", ("frequent urination", "use the bathroom more", "urinating more")),
    ("elevated blood glucose", ("blood sugar", "readings have been")),
    ("headache", ("headache", "headaches")),
    ("nausea", ("nausea", "nauseous")),
    ("dizziness", ("dizzy", "dizziness", "lightheaded")),
    ("fever", ("fever", "feverish")),
    ("weight loss", ("lost weight", "weight loss")),
    ("chest pain", ("chest pain", "chest tightness")),
]

_MEDICATION_TERMS: tuple[str, ...] = (
    "atorvastatin",
    "simvastatin",
    "rosuvastatin",
    "metformin",
    "insulin",
    "lisinopril",
    "losartan",
    "amlodipine",
    "metoprolol",
    "hydrochlorothiazide",
    "albuterol",
    "tiotropium",
    "prednisone",
    "levothyroxine",
    "warfarin",
    "apixaban",
    "aspirin",
    "ibuprofen",
    "acetaminophen",
    "omeprazole",
    "sertraline",
    "tamoxifen",
    "letrozole",
)
_MEDICATION_SUFFIX_RE = re.compile(
    r"\b([a-z]+(?:statin|pril|sartan|olol|formin|dipine|gliptin|gliflozin|glutide|prazole))\b",
    re.IGNORECASE,
)

_US_STATES: tuple[str, ...] = (
    "Alabama", "Alaska", "Arizona", "Arkansas", "California", "Colorado", "Connecticut",
    "Delaware", "Florida", "Georgia", "Hawaii", "Idaho", "Illinois", "Indiana", "Iowa",
    "Kansas", "Kentucky", "Louisiana", "Maine", "Maryland", "Massachusetts", "Michigan",
    "Minnesota", "Mississippi", "Missouri", "Montana", "Nebraska", "Nevada", "New Hampshire",
    "New Jersey", "New Mexico", "New York", "North Carolina", "North Dakota", "Ohio",
    "Oklahoma", "Oregon", "Pennsylvania", "Rhode Island", "South Carolina", "South Dakota",
    "Tennessee", "Texas", "Utah", "Vermont", "Virginia", "Washington", "West Virginia",
    "Wisconsin", "Wyoming",
)
_STATE_ALT = "|".join(re.escape(s) for s in sorted(_US_STATES, key=len, reverse=True))
_CITY_STATE_RE = re.compile(rf"\b([A-Z][a-z]+(?: [A-Z][a-z]+)?),\s*({_STATE_ALT})\b")
_STATE_RE = re.compile(rf"\b(?:in|from|live in|living in|near)\s+({_STATE_ALT})\b")

_MOMENT_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("Presenting complaint", re.compile(r"\b(brought you in|what brings you|been having|i've had|i have had)\b", re.IGNORECASE)),
    ("Symptom onset and duration", _DURATION_RE),
    ("Family history", re.compile(r"\b(family|mother|father|mom|dad|aunt|uncle|sister|brother)\b.*\b(had|has|diagnosed)\b", re.IGNORECASE)),
    ("Current medications", re.compile(r"\b(taking|take|on)\b.*\b(medication|mg|" + "|".join(_MEDICATION_TERMS) + r")\b", re.IGNORECASE)),
    ("Risk factor", re.compile(r"\b(smoker|smoked|smoking|alcohol|drink|stress)\b", re.IGNORECASE)),
    ("Diagnostic plan", re.compile(r"\b(mammogram|ultrasound|biopsy|imaging|x-ray|ct scan|mri|blood work|breathing tests?)\b", re.IGNORECASE)),
    ("Treatment plan", re.compile(r"\b(adjust your medication|increase|add a second|prescribe|start you on|dose)\b", re.IGNORECASE)),
    ("Clinical trial discussion", re.compile(r"\bclinical trials?\b", re.IGNORECASE)),
    ("Patient agrees to explore trials", re.compile(r"\b(i'd like to|sounds promising|willing to learn|that would be great)\b", re.IGNORECASE)),
]


def _score_role(sentence: str) -> Optional[str]:
    clinician = len(_CLINICIAN_RE.findall(sentence))
    patient = len(_PATIENT_RE.findall(sentence))
    if sentence.rstrip().endswith("?"):
        clinician += 2
    if clinician > patient:
        return DOCTOR
    if patient > clinician:
        return PATIENT
    return None


def _canonical_speaker(raw: str) -> str:
    lower = raw.lower()
    if "doctor" in lower or "dr." in lower or "clinician" in lower:
        return DOCTOR
    if "patient" in lower:
        return PATIENT
    return raw


def format_transcript_turns(transcript: str) -> list[Turn]:
    """
    Label a transcript as Doctor/Patient turns.

    Labeled input is kept and its aliases normalized. Unlabeled input is split into
    sentences; each sentence is scored with lexical cues, a question hands the
    floor to the other speaker, and consecutive sentences by one speaker merge.
    """
    parsed = parse_turns(transcript)
    if parsed and any(t.speaker != NARRATOR for t in parsed):
        return [Turn(speaker=_canonical_speaker(t.speaker), text=t.text) for t in parsed]

    turns: list[Turn] = []
    current = DOCTOR
    previous_was_question = False
    buffer: list[str] = []
    for sentence in split_sentences(transcript):
        role = _score_role(sentence)
        if role is None:
            role = (PATIENT if current == DOCTOR else DOCTOR) if previous_was_question else current
        if buffer and role != current:
            turns.append(Turn(speaker=current, text=" ".join(buffer)))
            buffer = []
        current = role
        buffer.append(sentence)
        previous_was_question = sentence.endswith("?")
    if buffer:
        turns.append(Turn(speaker=current, text=" ".join(buffer)))
    return turns


def _statement_sentences(transcript: str) -> list[str]:
    return [s for s in split_sentences(transcript) if not s.endswith("?")]


# Conversation text is full of short letter runs, so acronyms of three letters
# or fewer only count as standalone words here.
_ACRONYM_MAX_LEN = 3


def _label_pattern(keywords: Sequence[str]) -> re.Pattern[str]:
    parts = []
    for keyword in sorted(keywords, key=len, reverse=True):
        escaped = re.escape(keyword)
        if len(keyword) <= _ACRONYM_MAX_LEN:
            escaped = rf"(?<![a-z0-9]){escaped}(?![a-z0-9])"
        parts.append(escaped)
    return re.compile("|".join(parts), re.IGNORECASE)


_LABEL_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (label, _label_pattern(keywords)) for label, keywords in DIAGNOSIS_KEYWORDS.items()
]


def _affirmed(sentence: str, term: str) -> bool:
    idx = sentence.lower().find(term)
    if idx < 0:
        return False
    return not _NEGATION_RE.search(sentence[:idx])


def _label_hits(sentences: Sequence[str]) -> Counter[str]:
    hits: Counter[str] = Counter()
    for sentence in sentences:
        # "Ms. Rivera" must not read as the "ms" acronym.
        sentence = _HONORIFIC_NAME_RE.sub(" ", sentence)
        for label, pattern in _LABEL_PATTERNS:
            match = pattern.search(sentence)
            if match and not _NEGATION_RE.search(sentence[: match.start()]):
                hits[label] += 1
    return hits


def _pick_diagnosis(hits: Counter[str]) -> Optional[str]:
    if not hits:
        return None
    order = list(DIAGNOSIS_KEYWORDS)
    candidates = dict(hits)
    if len(candidates) > 1:
        candidates.pop("cancer", None)
    return sorted(candidates, key=lambda label: (-candidates[label], order.index(label)))[0]


def _extract_age(transcript: str) -> Optional[int]:
    for pattern in _AGE_RES:
        for match in pattern.finditer(transcript):
            age = int(match.group(1))
            if 0 <= age <= 120:
                return age
    return None


def _extract_sex(transcript: str) -> Optional[str]:
    female = len(_FEMALE_RE.findall(transcript))
    male = len(_MALE_RE.findall(transcript))
    if female > male:
        return "female"
    if male > female:
        return "male"
    return None


def _extract_location(transcript: str) -> Optional[Location]:
    match = _CITY_STATE_RE.search(transcript)
    if match:
        return Location(city=match.group(1), state=match.group(2))
    match = _STATE_RE.search(transcript)
    if match:
        return Location(state=match.group(1))
    return None


def _extract_symptoms(sentences: Sequence[str]) -> list[str]:
    found: list[str] = []
    for label, terms in _SYMPTOM_TERMS:
        for sentence in sentences:
            if any(_affirmed(sentence, term) for term in terms):
                found.append(label)
                break
    return found


def _extract_medications(transcript: str) -> list[str]:
    found: list[str] = []
    lower = transcript.lower()
    for name in _MEDICATION_TERMS:
        if re.search(rf"\b{name}\b", lower):
            found.append(name)
    for match in _MEDICATION_SUFFIX_RE.finditer(transcript):
        name = match.group(1).lower()
        if name not in found:
            found.append(name)
    return found


def _extract_allergies(sentences: Sequence[str]) -> list[str]:
    found: list[str] = []
    for sentence in sentences:
        for match in _ALLERGY_RE.finditer(sentence):
            if _NEGATION_RE.search(sentence[: match.start()]):
                continue
            item = match.group(1).strip().lower()
            if item and item not in found:
                found.append(item)
    return found


def extract_patient_profile(transcript: str) -> PatientProfile:
    statements = _statement_sentences(transcript)
    hits = _label_hits(statements)
    diagnosis = _pick_diagnosis(hits)
    conditions = [
        label
        for label in DIAGNOSIS_KEYWORDS
        if label in hits and label != diagnosis and label != "cancer"
    ]
    return PatientProfile(
        age=_extract_age(transcript),
        sex=_extract_sex(transcript),
        diagnosis=diagnosis,
        conditions=conditions,
        symptoms=_extract_symptoms(statements),
        medications=_extract_medications(transcript),
        allergies=_extract_allergies(statements),
        location=_extract_location(transcript),
    )


def extract_key_moments(transcript: str, max_moments: int = MAX_MOMENTS) -> list[KeyMoment]:
    """One moment per rule, quoting the first sentence that triggers it, in transcript order."""
    sentences = split_sentences(transcript)
    picked: list[tuple[int, KeyMoment]] = []
    used: set[int] = set()
    for desc, pattern in _MOMENT_RULES:
        for idx, sentence in enumerate(sentences):
            if idx in used or not pattern.search(sentence):
                continue
            used.add(idx)
            picked.append((idx, KeyMoment(desc=desc, quote=sentence)))
            break
    picked.sort(key=lambda pair: pair[0])
    return [moment for _, moment in picked[:max_moments]]
