from __future__ import annotations

"""
Map free-text diagnoses onto canonical condition labels.

Design intent:
- Registry searches work better with a short canonical label than with the
  clinician's full phrasing ("stage II invasive ductal carcinoma, left breast").
- Table order matters: specific cancers precede the generic "cancer" label and
  the first label with a matching keyword wins.
- Keywords match as plain case-insensitive substrings, so short acronyms also
  fire inside longer words ("cad" in "CADASIL").
"""

DIAGNOSIS_KEYWORDS: dict[str, tuple[str, ...]] = {
    # Cancer
    "breast cancer": ("breast cancer", "breast neoplasm", "mammary carcinoma", "ductal carcinoma", "lobular carcinoma"),
    "lung cancer": (
        "lung cancer",
        "lung neoplasm",
        "pulmonary carcinoma",
        "non-small cell lung cancer",
        "nsclc",
        "small cell lung cancer",
        "sclc",
    ),
    "prostate cancer": ("prostate cancer", "prostate neoplasm", "prostatic carcinoma", "adenocarcinoma of prostate"),
    "colorectal cancer": ("colorectal cancer", "colon cancer", "rectal cancer", "bowel cancer", "intestinal cancer"),
    "pancreatic cancer": ("pancreatic cancer", "pancreatic neoplasm", "pancreatic adenocarcinoma"),
    "ovarian cancer": ("ovarian cancer", "ovarian neoplasm", "ovarian carcinoma"),
    "melanoma": ("melanoma", "malignant melanoma", "skin cancer", "cutaneous melanoma"),
    "leukemia": (
        "leukemia",
        "leukaemia",
        "blood cancer",
        "acute lymphoblastic leukemia",
        "chronic lymphocytic leukemia",
    ),
    "lymphoma": ("lymphoma", "hodgkin lymphoma", "non-hodgkin lymphoma", "burkitt lymphoma"),
    "brain cancer": ("brain cancer", "brain tumor", "glioblastoma", "meningioma", "astrocytoma"),
    "liver cancer": ("liver cancer", "hepatocellular carcinoma", "hepatoma", "liver neoplasm"),
    "kidney cancer": ("kidney cancer", "renal cancer", "renal cell carcinoma", "nephroma"),
    "bladder cancer": ("bladder cancer", "bladder neoplasm", "urothelial carcinoma"),
    "cervical cancer": ("cervical cancer", "cervical neoplasm", "cervical carcinoma"),
    "endometrial cancer": ("endometrial cancer", "uterine cancer", "endometrial carcinoma"),
    "thyroid cancer": ("thyroid cancer", "thyroid neoplasm", "papillary thyroid carcinoma"),
    "cancer": ("cancer", "carcinoma", "neoplasm", "tumor", "malignancy", "oncology"),
    # Cardiovascular
    "hypertension": ("hypertension", "high blood pressure", "elevated blood pressure", "arterial hypertension"),
    "heart disease": (
        "heart disease",
        "cardiac disease",
        "cardiovascular disease",
        "coronary artery disease",
        "cad",
    ),
    "heart failure": ("heart failure", "congestive heart failure", "chf", "cardiac failure"),
    "arrhythmia": ("arrhythmia", "irregular heartbeat", "atrial fibrillation", "afib", "ventricular tachycardia"),
    "myocardial infarction": ("myocardial infarction", "heart attack", "mi", "acute coronary syndrome"),
    "stroke": (
        "stroke",
        "cerebrovascular accident",
        "cva",
        "brain attack",
        "ischemic stroke",
        "hemorrhagic stroke",
    ),
    "peripheral artery disease": ("peripheral artery disease", "pad", "peripheral vascular disease", "pvd"),
    # Respiratory
    "copd": (
        "copd",
        "chronic obstructive pulmonary disease",
        "obstructive pulmonary",
        "emphysema",
        "chronic bronchitis",
    ),
    "asthma": ("asthma", "bronchial asthma", "allergic asthma", "exercise-induced asthma"),
    "pneumonia": ("pneumonia", "lung infection", "bacterial pneumonia", "viral pneumonia"),
    "pulmonary fibrosis": ("pulmonary fibrosis", "lung fibrosis", "idiopathic pulmonary fibrosis", "ipf"),
    "sleep apnea": ("sleep apnea", "obstructive sleep apnea", "osa", "sleep disorder"),
    # Endocrine / metabolic
    "diabetes": (
        "diabetes",
        "diabetes mellitus",
        "diabetic",
        "type 1 diabetes",
        "type 2 diabetes",
        "glucose intolerance",
    ),
    "thyroid disorder": ("thyroid disorder", "hypothyroidism", "hyperthyroidism", "thyroid dysfunction"),
    "obesity": ("obesity", "overweight", "morbid obesity", "weight management"),
    "metabolic syndrome": ("metabolic syndrome", "insulin resistance", "prediabetes"),
    # Neurological / psychiatric
    "alzheimer": ("alzheimer", "alzheimer disease", "dementia", "cognitive decline", "memory loss"),
    "parkinson": ("parkinson", "parkinson disease", "parkinsons", "movement disorder"),
    "multiple sclerosis": ("multiple sclerosis", "ms", "demyelinating disease"),
    "epilepsy": ("epilepsy", "seizure disorder", "seizures", "convulsions"),
    "migraine": ("migraine", "headache", "severe headache", "chronic headache"),
    "depression": ("depression", "major depression", "clinical depression", "depressive disorder"),
    "anxiety": ("anxiety", "anxiety disorder", "generalized anxiety", "panic disorder"),
    "bipolar disorder": ("bipolar disorder", "manic depression", "bipolar"),
    "schizophrenia": ("schizophrenia", "psychosis", "schizoaffective disorder"),
    # Autoimmune / inflammatory
    "rheumatoid arthritis": ("rheumatoid arthritis", "ra", "inflammatory arthritis"),
    "lupus": ("lupus", "systemic lupus erythematosus", "sle", "autoimmune disease"),
    "crohn disease": ("crohn disease", "crohns disease", "inflammatory bowel disease", "ibd"),
    "ulcerative colitis": ("ulcerative colitis", "uc", "inflammatory bowel disease", "ibd"),
    "psoriasis": ("psoriasis", "psoriatic arthritis", "skin disorder"),
    "fibromyalgia": ("fibromyalgia", "chronic pain", "widespread pain"),
    # Infectious
    "hiv": ("hiv", "human immunodeficiency virus", "aids", "acquired immunodeficiency syndrome"),
    "hepatitis": ("hepatitis", "hepatitis b", "hepatitis c", "liver inflammation"),
    "tuberculosis": ("tuberculosis", "tb", "mycobacterium tuberculosis"),
    # Kidney / urinary
    "chronic kidney disease": (
        "chronic kidney disease",
        "ckd",
        "kidney failure",
        "renal disease",
        "end stage renal disease",
    ),
    "kidney stones": ("kidney stones", "renal calculi", "nephrolithiasis", "urinary stones"),
    # Gastrointestinal
    "gastroesophageal reflux": ("gastroesophageal reflux", "gerd", "acid reflux", "heartburn"),
    "irritable bowel syndrome": ("irritable bowel syndrome", "ibs", "spastic colon"),
    "peptic ulcer": ("peptic ulcer", "stomach ulcer", "gastric ulcer", "duodenal ulcer"),
    # Bone / joint
    "osteoporosis": ("osteoporosis", "bone loss", "bone density loss"),
    "osteoarthritis": ("osteoarthritis", "degenerative arthritis", "joint disease"),
    # Blood
    "anemia": ("anemia", "iron deficiency", "low hemoglobin", "blood disorder"),
    "thrombosis": ("thrombosis", "blood clot", "deep vein thrombosis", "dvt", "pulmonary embolism"),
    # Other
    "chronic fatigue syndrome": ("chronic fatigue syndrome", "cfs", "myalgic encephalomyelitis"),
    "macular degeneration": ("macular degeneration", "age-related macular degeneration", "amd", "vision loss"),
    "glaucoma": ("glaucoma", "increased eye pressure", "optic nerve damage"),
}


def normalize_diagnosis(text: str) -> str:
    """Return the first canonical label whose keywords occur in `text`, else `text`."""
    if not text:
        return text
    lower = text.lower()
    for label, keywords in DIAGNOSIS_KEYWORDS.items():
        if any(keyword in lower for keyword in keywords):
            return label
    return text
