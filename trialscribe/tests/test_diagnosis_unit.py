from trialscribe.trials.diagnosis import DIAGNOSIS_KEYWORDS, normalize_diagnosis


def test_normalize_diagnosis_maps_keyword_to_canonical_label_regardless_of_case() -> None:
    assert normalize_diagnosis("Stage II invasive DUCTAL CARCINOMA, left breast") == "breast cancer"
    assert normalize_diagnosis("High Blood Pressure") == "hypertension"
    assert normalize_diagnosis("history of Heart Attack in 2019") == "myocardial infarction"
    assert normalize_diagnosis("Type 2 Diabetes Mellitus") == "diabetes"


def test_normalize_diagnosis_is_identity_when_nothing_matches() -> None:
    assert normalize_diagnosis("Ehlers-Danlos syndrome") == "Ehlers-Danlos syndrome"
    assert normalize_diagnosis("") == ""


def test_specific_cancer_wins_over_generic_cancer_label() -> None:
    assert normalize_diagnosis("metastatic pancreatic adenocarcinoma") == "pancreatic cancer"
    assert normalize_diagnosis("unspecified malignancy") == "cancer"


def test_keywords_match_as_plain_substrings_even_inside_words() -> None:
    assert normalize_diagnosis("CADASIL") == "heart disease"
    assert normalize_diagnosis("academic decline") == "heart disease"
    # "mi" occurs in "migraine" and its label is declared first.
    assert normalize_diagnosis("chronic migraine") == "myocardial infarction"
    assert normalize_diagnosis("relapsing MS") == "multiple sclerosis"
    assert normalize_diagnosis("prior MI") == "myocardial infarction"


def test_every_keyword_in_table_normalizes_to_a_label() -> None:
    labels = list(DIAGNOSIS_KEYWORDS)
    for label, keywords in DIAGNOSIS_KEYWORDS.items():
        for keyword in keywords:
            result = normalize_diagnosis(keyword.upper())
            assert result in labels
            # Earlier labels may claim a shared keyword; never a later one.
            assert labels.index(result) <= labels.index(label)
