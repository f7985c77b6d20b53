"""Gemini-backed helpers: reviewer summaries and follow-up call transcript parsing."""
import json
import logging
from typing import Optional

from google.genai import types

from utils import genai_model, get_genai_client

logger = logging.getLogger(__name__)

SCREENING_SYSTEM_PROMPT = """You are a medical screening assistant helping evaluate bone marrow donor eligibility.
Analyze the submission data and provide a brief, professional assessment. Focus on:
1. The significance of each flagged condition
2. Whether the combination of factors increases or decreases concern
3. A clear recommendation (suitable, unsuitable, or needs further review)
Keep your response under 150 words and be direct."""

TRANSCRIPT_SYSTEM_PROMPT = """You are an expert at parsing phone call transcripts from donor follow-up calls.
Extract structured data from the conversation. Return a JSON object with the following fields:

- call_successful: boolean - true if the donor answered and completed the questionnaire. Set to FALSE if:
  - The donor asked to be called back later
  - The donor said they're busy or can't talk now
  - The call was cut short before completing
  - The donor didn't answer all the questions
  - The donor explicitly requested a callback
- callback_requested: boolean - true if the donor explicitly asked to be called back later
- callback_reason: string or null - why they want to call back (busy, not feeling well, bad time, etc.)
- pain_level: number (1-10) or null - pain during procedure
- current_pain_level: number (1-10) or null - current pain level
- doctor_rating: number (1-5) or null
- nurse_rating: number (1-5) or null
- staff_rating: number (1-5) or null
- took_pain_medication: boolean or null
- pain_medication_details: string or null
- checked_aspiration_sites: boolean or null
- aspiration_sites_notes: string or null
- signs_of_infection: boolean or null
- infection_details: string or null
- unusual_symptoms: boolean or null
- symptoms_details: string or null
- would_donate_again: boolean or null
- procedure_feedback: string or null - any general feedback mentioned
- concerns_flagged: boolean - true if donor mentioned serious concerns
- summary: string - brief summary of the call

Only include fields where you can confidently extract the data. Use null for unclear or missing information.
IMPORTANT: If the conversation indicates the donor couldn't complete the call or asked to call back, set call_successful to false and callback_requested to true."""


def summarize_submission(prompt: str) -> Optional[str]:
    """Free-text reviewer assessment, or None when the model is unavailable."""
    try:
        response = get_genai_client().models.generate_content(
            model=genai_model(),
            contents=prompt,
            config=types.GenerateContentConfig(system_instruction=SCREENING_SYSTEM_PROMPT),
        )
    except Exception as e:
        logger.error("AI analysis failed, using rule-based summary: %s", e)
        return None

    text = (response.text or "").strip()
    return text or None


def parse_transcript(transcript: str) -> Optional[dict]:
    """Structured survey answers extracted from a call transcript, or None."""
    try:
        response = get_genai_client().models.generate_content(
            model=genai_model(),
            contents=f"Parse this follow-up call transcript:\n\n{transcript}",
            config=types.GenerateContentConfig(
                system_instruction=TRANSCRIPT_SYSTEM_PROMPT,
                response_mime_type="application/json",
            ),
        )
    except Exception as e:
        logger.error("Error calling Gemini for transcript parsing: %s", e)
        return None

    content = response.text
    if not content:
        return None

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        logger.error("Transcript parser returned non-JSON content")
        return None

    return parsed if isinstance(parsed, dict) else None
