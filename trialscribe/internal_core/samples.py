from __future__ import annotations

"""Demo transcripts for exercising the pipeline without a microphone."""

SAMPLE_BREAST_CANCER_FOLLOWUP = """Doctor: Good afternoon, Ms. Rivera. What brings you in today?
Patient: Hi, Dr. Chen. I'm 52 and I was diagnosed with breast cancer last spring. I finished chemotherapy in October, and I wanted to talk about what comes next.
Doctor: Thanks for coming in. How have you been feeling since the last cycle?
Patient: Mostly tired. I get numbness in my fingertips, and some nights I have trouble sleeping. I also have high blood pressure, so I take lisinopril every morning.
Doctor: Any allergies to medications?
Patient: I'm allergic to penicillin. It gives me hives.
Doctor: Understood. Where are you living now?
Patient: We moved to Tampa, Florida in the summer, so I'd like something close to home.
Doctor: That helps. There are several studies for patients who have completed chemotherapy, and some are recruiting near Tampa. I'd like to look at those with you today.
Patient: That would be great. I'd really like to know my options.
"""

SAMPLE_CHEST_PRESSURE_VISIT = """Doctor: Good morning, Mr. Okafor. How are you feeling today?
Patient: Not great, Dr. Shah. I'm 61, and for about two months I've had pressure in my chest when I climb stairs. It goes away after I rest for a few minutes.
Doctor: Does the pressure spread anywhere, like your arm or jaw?
Patient: Sometimes into my left arm. I also get short of breath and a little dizzy.
Doctor: Do you have any other medical conditions?
Patient: I have type 2 diabetes. I take metformin twice a day and atorvastatin at night.
Doctor: Any allergies?
Patient: No known drug allergies.
Doctor: Based on what you describe, I'm concerned about coronary artery disease. I'd like to order a stress test and some blood work today.
Patient: Okay. I live in Columbus, Ohio, if that matters for follow-up.
"""

SAMPLE_TRANSCRIPTS: dict[str, str] = {
    "breast_cancer_followup": SAMPLE_BREAST_CANCER_FOLLOWUP,
    "chest_pressure_visit": SAMPLE_CHEST_PRESSURE_VISIT,
}

DEFAULT_SAMPLE = "breast_cancer_followup"


def get_sample_transcript(name: str = DEFAULT_SAMPLE) -> str:
    try:
        return SAMPLE_TRANSCRIPTS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown sample transcript: {name}") from exc
