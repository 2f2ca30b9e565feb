# backend/consultation_ai/services/prompts.py
"""Prompt templates. Loaded once at import and never mutated."""

from consultation_ai.models import PatientInfo

NOT_PROVIDED = "Not Provided"

SYSTEM_PROMPT = """
You are an expert medical AI assistant specialized in clinical documentation and analysis.
Your purpose is to assist healthcare professionals by processing consultation audio into
structured, accurate, and insightful medical data. You must adhere to the highest standards
of clinical accuracy and provide evidence-based reasoning. Always output your final analysis
in the requested JSON format with proper string formatting.
"""

DIARIZATION_PROMPT = """
You are a highly accurate AI assistant specializing in processing medical transcripts.
Your task is to add speaker labels ("Doctor:" and "Patient:") to the following raw transcript.
The conversation is between a doctor and a patient. Analyze the dialogue to correctly identify
who is speaking at each turn.
Maintain the original wording precisely. Do not add any extra text, summary, or commentary.
Your output should ONLY be the formatted transcript with the added labels.

RAW TRANSCRIPT:
\"\"\"
{transcript}
\"\"\"

FORMATTED TRANSCRIPT:
"""

PATIENT_HEADER = """
PATIENT INFORMATION:
Name: {name}
Age: {age}
Gender: {gender}
Visit Type: {visit_type}
"""

ANALYSIS_PROMPT = """{patient_header}
CONSULTATION TRANSCRIPT:
\"\"\"
{transcript}
\"\"\"

Based on the provided transcript and patient information, perform a comprehensive medical
analysis. Generate a response in the following strict JSON format ONLY. Do not include any
text or markdown formatting outside of the JSON object.

IMPORTANT: All field values must be strings or properly formatted arrays. Do not use nested
objects for simple fields.

{{
  "clinicalSummary": {{
    "chiefComplaint": "A concise summary of the patient's primary reason for the visit.",
    "historyOfPresentIllness": "A detailed narrative of the current symptoms, including onset, duration, severity, and associated factors.",
    "assessment": "Your clinical assessment, including the most likely diagnosis and rationale.",
    "plan": "A structured plan as a formatted string. Include: Immediate Treatment: [details], Follow-up Treatment: [details], Additional Care: [details]",
    "vitals": "Vital signs if mentioned in the transcript, otherwise 'Not recorded'.",
    "riskFactors": ["List of relevant risk factors identified from the conversation."]
  }},
  "medicalInsights": {{
    "differentialDiagnosis": [
      {{
        "condition": "Primary or alternative diagnosis",
        "probability": "High | Moderate | Low (e.g., 'High (approx. 85%)')",
        "reasoning": "Brief clinical reasoning based on transcript evidence.",
        "icd10": "The most appropriate ICD-10 code."
      }}
    ],
    "redFlags": [
      {{
        "flag": "Any symptom or finding that requires urgent attention.",
        "status": "Critical | Monitor | Noted",
        "action": "Recommended immediate action for this flag."
      }}
    ],
    "recommendations": [
      {{"category": "Immediate", "items": ["Actionable recommendations for immediate consideration."]}},
      {{"category": "Follow-up", "items": ["Recommendations for future appointments or monitoring."]}},
      {{"category": "Lifestyle", "items": ["Suggestions for lifestyle changes, diet, exercise, etc."]}}
    ],
    "clinicalDecisionSupport": {{
      "guidelines": "Relevant clinical guidelines (e.g., 'AHA/ACC Guidelines for Hypertension').",
      "evidenceLevel": "Level A | Level B | Level C",
      "recommendedActions": ["Key actions supported by evidence."]
    }}
  }}
}}
"""

KEY_POINTS_SYSTEM = "You are a medical scribe extracting key clinical points."

KEY_POINTS_PROMPT = """Extract the most important clinical points from this medical consultation transcript:

"{transcript}"

Provide 5-8 concise bullet points."""

TRANSCRIPTION_PROMPT = (
    "This is a medical consultation between a doctor and a patient. Key terms include "
    "symptoms, diagnosis, medication, hypertension, diabetes, migraine, etc."
)

PRESCRIPTION_PROMPT = """{patient_header}
PRESCRIPTION TRANSCRIPT:
\"\"\"
{transcript}
\"\"\"

You are tasked with generating a structured e-prescription based on the doctor's verbal
instructions in the transcript. Extract medication details (name, dosage, frequency, duration,
instructions) and any additional instructions. Output in the following strict JSON format ONLY:

{{
  "medications": [
    {{
      "name": "Medication name",
      "dosage": "Dosage amount (e.g., 500 mg)",
      "frequency": "Frequency of administration (e.g., twice daily)",
      "duration": "Duration of treatment (e.g., 7 days)",
      "instructions": "Specific instructions or null if none"
    }}
  ],
  "additionalInstructions": "Any additional instructions or null if none"
}}
"""


def patient_header(patient: PatientInfo) -> str:
    return PATIENT_HEADER.format(
        name=patient.name or NOT_PROVIDED,
        age=patient.age or NOT_PROVIDED,
        gender=patient.gender or NOT_PROVIDED,
        visit_type=patient.visit_type or NOT_PROVIDED,
    )
