"""
EduPath Consult — Document Analysis Adapter

Pipeline (per document):
  1. Cache lookup by (document type, normalized text digest)
  2. Truncate long text (keep the head and the tail)
  3. Build the document-specific prompt
  4. Claude call, JSON-only reply, code fences stripped
  5. Schema validation (pydantic); extra nested sections are kept
  6. Cache + return

Failures never propagate: a transport error, an empty reply, bad JSON or a
schema mismatch all produce the canned manual-review analysis, which is not
cached. Without ANTHROPIC_API_KEY a deterministic mock analysis is returned
so the app runs offline.
"""
import json
import time as _time
from datetime import date
from typing import List

import anthropic
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from edupath.config import (
    USE_REAL_API, ANALYSIS_MODEL, MAX_INPUT_TOKENS, MAX_OUTPUT_TOKENS, CHARS_PER_TOKEN,
)
from edupath.analysis.cache import analysis_cache, make_cache_key

__all__ = [
    'analyze_visa_document', 'analyze_enrollment_document', 'truncate_text',
    'VisaAnalysis', 'EnrollmentAnalysis', 'manual_review_analysis',
    'template_unavailable_analysis', 'analysis_cache', 'make_cache_key',
]

SUPPORTED_ENROLLMENT_TYPES = ("coe", "offer_letter")
TRUNCATION_MARKER = "\n\n[... DOCUMENT TRUNCATED FOR ANALYSIS ...]\n\n"


# ============================================================
# SCHEMAS
# ============================================================
class _AnalysisModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class VisaAnalysis(_AnalysisModel):
    summary: str
    rejection_reasons: List[dict] = []
    key_terms: List[dict] = []
    recommendations: List[dict] = []
    next_steps: List[dict] = []

    @property
    def analysis_type(self) -> str:
        return "rejection" if self.rejection_reasons else "approval"


class EnrollmentAnalysis(_AnalysisModel):
    summary: str
    key_findings: List[dict]
    recommendations: List[dict]
    next_steps: List[dict]


# ============================================================
# PROMPTS
# ============================================================
VISA_SYSTEM = "You are a visa consultant specialized in analyzing visa approval and rejection letters. Reply with JSON only."

VISA_PROMPT = """Analyze the following visa document. First decide whether it is an APPROVAL or a REJECTION.

For APPROVALS cover the key terms (validity, work permission, study conditions, travel restrictions,
compliance), recommendations for compliance and next steps.
For REJECTIONS cover each rejection reason with its category, a recommendation per reason and
next steps for reapplication.

Rejection categories: financial (funds/sponsorship), documentation (missing/inadequate documents),
eligibility (course/institution issues), academic (qualifications), immigration_history (previous
refusals/violations), ties_to_home (intention to return), credibility (truthfulness concerns),
general (other issues).

Focus only on the document content. Be specific and actionable.

Return ONLY valid JSON (no markdown, no explanation):
{
  "summary": "brief summary of the decision and key information",
  "rejectionReasons": [{"title": "...", "description": "...", "category": "financial|documentation|eligibility|academic|immigration_history|ties_to_home|credibility|general"}],
  "keyTerms": [{"title": "...", "description": "...", "category": "validity|work_permission|study_conditions|travel_restrictions|compliance|general"}],
  "recommendations": [{"title": "...", "description": "..."}],
  "nextSteps": [{"title": "...", "description": "..."}]
}
Use an empty rejectionReasons list for approvals and an empty keyTerms list for rejections.

Visa document:
\"\"\"
{text}
\"\"\""""

COE_SYSTEM = ("You are an expert at analyzing Australian Confirmation of Enrollment (CoE) documents. "
              "Extract information accurately and reply with JSON only.")

COE_PROMPT = """You are analyzing a Confirmation of Enrollment (CoE) document. Return ONLY valid JSON with this structure:
{
  "documentStatus": {"processed": true, "coeNumber": "CoE/registration number", "processedDate": "{today}"},
  "institutionDetails": {"institutionName": "", "tradingName": "", "registrationCode": "CRICOS/registration number",
                         "country": "", "contactInfo": {"phone": "", "email": "", "fax": ""}},
  "courseDetails": {"courseTitle": "", "courseCode": "", "level": "Bachelor/Master/Diploma/Certificate",
                    "fieldOfStudy": "", "duration": {"startDate": "DD/MM/YYYY", "endDate": "DD/MM/YYYY",
                    "totalDuration": "X years Y months"}, "studyMode": "Full-time/Part-time/Online"},
  "financialDetails": {"totalTuitionFee": "", "initialPrepaid": "", "otherFees": "",
                       "costBreakdown": {"perYear": "", "perSemester": ""},
                       "scholarships": {"details": "", "value": ""}},
  "studentDetails": {"studentId": "", "fullName": "", "dateOfBirth": "DD/MM/YYYY", "age": "", "gender": "",
                     "nationality": "", "countryOfBirth": ""},
  "languageRequirements": {"testType": "IELTS/TOEFL/PTE/Other", "scoreAchieved": "", "testDate": "DD/MM/YYYY",
                           "scoreValidity": "", "requirementStatus": "Met/Not Met"},
  "healthInsurance": {"oshcRequired": "Yes/No", "provider": "", "coverageType": "Single/Family/Couple",
                      "coveragePeriod": {"startDate": "", "endDate": "", "duration": ""}, "estimatedCost": ""},
  "keyDatesDeadlines": {"courseCommencement": "", "oshcStart": "", "visaApplicationDeadline": "",
                        "enrollmentConfirmation": "", "urgentActions": []},
  "complianceInfo": {"cricosRegistration": "Valid/Check Required", "esosCompliance": "",
                     "governmentRegistration": "", "importantNotes": []},
  "summary": "comprehensive summary of the CoE document",
  "keyFindings": [{"category": "academic", "finding": "", "importance": "high|medium|low",
                   "actionRequired": "", "deadline": ""}],
  "recommendations": [{"category": "visa", "recommendation": "", "priority": "high|medium|low"}],
  "nextSteps": [{"step": "", "description": "", "timeline": "", "priority": "high|medium|low"}]
}

If information is not found in the document, use "Not specified in document" for that field.

Document text:
{text}"""

OFFER_SYSTEM = ("You are an expert education counselor specializing in international student offer letters. "
                "Reply with JSON only.")

OFFER_PROMPT = """Analyze this university offer letter. Return ONLY valid JSON with this structure:
{
  "institutionName": "", "studentName": "", "studentId": "",
  "programName": "program name with course code", "programLevel": "", "startDate": "", "endDate": "",
  "offerType": "conditional|unconditional", "offerConditions": [],
  "acceptanceDeadline": "", "tuitionAmount": "", "currency": "", "scholarshipAmount": "",
  "depositRequired": "", "healthCover": "", "englishTestScore": "", "institutionContact": "",
  "summary": "detailed summary including all fees, conditions and deadlines",
  "keyFindings": [{"category": "", "finding": "", "importance": "high|medium|low", "actionRequired": "", "deadline": ""}],
  "recommendations": [{"category": "", "recommendation": "", "priority": "high|medium|low"}],
  "nextSteps": [{"step": "", "description": "", "timeline": "", "priority": "high|medium|low"}]
}

If information is not found in the document, use "Not specified in document" for that field.

Document text:
{text}"""


def truncate_text(text: str, max_tokens: int = MAX_INPUT_TOKENS) -> str:
    """Keep the head (70%) and the tail of an over-long document."""
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    keep_start = int(max_chars * 0.7)
    keep_end = max(max_chars - keep_start - 100, 0)
    tail = text[-keep_end:] if keep_end else ""
    return text[:keep_start] + TRUNCATION_MARKER + tail


def _build_prompt(document_type: str, text: str) -> tuple:
    if document_type == "coe":
        return COE_SYSTEM, COE_PROMPT.replace("{today}", date.today().isoformat()).replace("{text}", text)
    return OFFER_SYSTEM, OFFER_PROMPT.replace("{text}", text)


# ============================================================
# FALLBACK ANALYSES
# ============================================================
def template_unavailable_analysis(document_type: str) -> dict:
    return {
        "summary": (f"Analysis for {document_type} documents is not yet available. Currently only "
                    "Confirmation of Enrollment (CoE) and offer letter documents are supported. "
                    "Please select the matching document type or wait for additional templates."),
        "keyFindings": [{"category": "system", "finding": f"{document_type} analysis template is not yet available",
                         "importance": "high", "actionRequired": "Use the CoE or offer letter document type",
                         "deadline": "N/A"}],
        "recommendations": [{"category": "system", "priority": "high",
                             "recommendation": "Upload a CoE or offer letter, or wait for additional templates"}],
        "nextSteps": [{"step": "Upload a supported document", "timeline": "Immediate", "priority": "high",
                       "description": "Only CoE and offer letter documents have analysis templates"}],
    }


def manual_review_analysis(document_type: str) -> dict:
    return {
        "summary": (f"Unable to fully analyze this {document_type} document due to processing limitations. "
                    "Please verify all information manually and consult a qualified education counselor."),
        "keyFindings": [{"category": "system", "finding": "Automated analysis could not be completed",
                         "importance": "high", "actionRequired": "Manual review by a counselor"}],
        "recommendations": [{"category": "general", "priority": "high",
                             "recommendation": "Have an education counselor review this document"}],
        "nextSteps": [{"step": "Manual Review Required", "priority": "high", "timeline": "As soon as possible",
                       "description": "This document requires manual review by an education counselor."}],
    }


def visa_manual_review_analysis() -> dict:
    return {
        "summary": ("Unable to analyze this visa document automatically. Please have it reviewed "
                    "by a qualified visa consultant."),
        "rejectionReasons": [], "keyTerms": [],
        "recommendations": [{"title": "Manual Review Required",
                             "description": "This document requires manual review by a visa consultant."}],
        "nextSteps": [{"title": "Book a consultation",
                       "description": "Request an appointment so a consultant can review the document with you."}],
    }


# ============================================================
# MOCK ANALYSES (no API key)
# ============================================================
def _mock_visa_analysis(text: str) -> dict:
    lowered = text.lower()
    rejected = any(w in lowered for w in ("refus", "reject", "not satisfied", "denied"))
    if rejected:
        return {
            "summary": "Mock analysis: the document reads as a visa refusal.",
            "rejectionReasons": [{"title": "Insufficient evidence of funds", "category": "financial",
                                  "description": "The decision letter questions the available financial support."}],
            "keyTerms": [],
            "recommendations": [{"title": "Strengthen financial evidence",
                                 "description": "Provide bank statements covering the full required period."}],
            "nextSteps": [{"title": "Prepare reapplication",
                           "description": "Address each refusal reason before lodging a new application."}],
        }
    return {
        "summary": "Mock analysis: the document reads as a visa grant.",
        "rejectionReasons": [],
        "keyTerms": [{"title": "Study conditions", "category": "study_conditions",
                      "description": "Maintain enrolment and satisfactory course progress."}],
        "recommendations": [{"title": "Keep records", "description": "Keep a copy of the grant notice with your passport."}],
        "nextSteps": [{"title": "Plan travel", "description": "Arrange travel before the course start date."}],
    }


def _mock_enrollment_analysis(document_type: str, filename: str) -> dict:
    label = "Confirmation of Enrollment" if document_type == "coe" else "offer letter"
    return {
        "summary": f"Mock analysis of {label} '{filename}'. Set ANTHROPIC_API_KEY for a full analysis.",
        "keyFindings": [{"category": "academic", "finding": f"{label} received", "importance": "medium"}],
        "recommendations": [{"category": "visa", "priority": "medium",
                             "recommendation": "Check course dates against your visa application timeline"}],
        "nextSteps": [{"step": "Review document", "priority": "medium", "timeline": "This week",
                       "description": "Confirm every detail in the document is correct."}],
    }


# ============================================================
# LLM CALL
# ============================================================
def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        first_nl = text.index("\n") if "\n" in text else len(text)
        text = text[first_nl + 1:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


def _parse_json(text: str) -> dict:
    if not text or not text.strip():
        raise ValueError("Empty analysis reply")
    result = json.loads(_strip_fences(text))
    if not isinstance(result, dict):
        raise ValueError("Analysis reply is not a JSON object")
    return result


async def _call_llm(system: str, prompt: str, model: str = ANALYSIS_MODEL) -> tuple:
    """One Claude call. Returns (reply_text, tokens_used)."""
    client = anthropic.AsyncAnthropic()
    msg = await client.messages.create(model=model, max_tokens=MAX_OUTPUT_TOKENS, system=system,
                                       messages=[{"role": "user", "content": prompt}])
    text = msg.content[0].text if msg.content else ""
    tokens = (msg.usage.input_tokens + msg.usage.output_tokens) if msg.usage else 0
    return text, tokens


# ============================================================
# PUBLIC API
# ============================================================
async def analyze_visa_document(text: str) -> tuple:
    """Analyze a visa approval / rejection letter.
    Returns (analysis, tokens_used). analysis carries analysisType and _source."""
    if not USE_REAL_API:
        analysis = VisaAnalysis.model_validate(_mock_visa_analysis(text))
        result = analysis.model_dump(by_alias=True)
        result["analysisType"] = analysis.analysis_type
        result["_source"] = "mock"
        return result, 0

    t0 = _time.time()
    try:
        reply, tokens = await _call_llm(VISA_SYSTEM, VISA_PROMPT.replace("{text}", truncate_text(text)))
        analysis = VisaAnalysis.model_validate(_parse_json(reply))
    except (json.JSONDecodeError, ValueError, ValidationError) as e:
        print(f"[ANALYSIS] Visa reply rejected: {type(e).__name__}: {e}")
        return _visa_fallback(), 0
    except Exception as e:
        print(f"[ANALYSIS] Visa API error: {type(e).__name__}: {e}")
        return _visa_fallback(), 0

    result = analysis.model_dump(by_alias=True)
    result["analysisType"] = analysis.analysis_type
    result["_source"] = "claude"
    print(f"[ANALYSIS] Visa {analysis.analysis_type} analysed in {round((_time.time() - t0) * 1000)}ms, {tokens} tokens")
    return result, tokens


def _visa_fallback() -> dict:
    result = visa_manual_review_analysis()
    result["analysisType"] = "unknown"
    result["_source"] = "fallback"
    return result


async def analyze_enrollment_document(text: str, document_type: str, filename: str) -> dict:
    """Analyze an enrollment document (CoE, offer letter).
    Returns {analysis, tokensUsed, processingTime, cached, source}."""
    t0 = _time.time()

    def _done(analysis, tokens=0, cached=False, source="claude"):
        return {"analysis": analysis, "tokensUsed": tokens,
                "processingTime": round((_time.time() - t0) * 1000),
                "cached": cached, "source": source}

    if document_type not in SUPPORTED_ENROLLMENT_TYPES:
        return _done(template_unavailable_analysis(document_type), source="template_unavailable")

    key = make_cache_key(document_type, text)
    hit = analysis_cache.get(key)
    if hit is not None:
        print(f"[CACHE] Hit for {document_type} '{filename}'")
        return _done(hit, cached=True, source="cache")

    if not USE_REAL_API:
        analysis = EnrollmentAnalysis.model_validate(_mock_enrollment_analysis(document_type, filename))
        result = analysis.model_dump(by_alias=True)
        analysis_cache.put(key, result)
        return _done(result, source="mock")

    system, prompt = _build_prompt(document_type, truncate_text(text))
    try:
        reply, tokens = await _call_llm(system, prompt)
        analysis = EnrollmentAnalysis.model_validate(_parse_json(reply))
    except (json.JSONDecodeError, ValueError, ValidationError) as e:
        print(f"[ANALYSIS] {document_type} reply rejected for '{filename}': {type(e).__name__}: {e}")
        return _done(manual_review_analysis(document_type), source="fallback")
    except Exception as e:
        print(f"[ANALYSIS] API error for '{filename}': {type(e).__name__}: {e}")
        return _done(manual_review_analysis(document_type), source="fallback")

    result = analysis.model_dump(by_alias=True)
    analysis_cache.put(key, result)
    out = _done(result, tokens=tokens)
    print(f"[ANALYSIS] {document_type} '{filename}' analysed in {out['processingTime']}ms, {tokens} tokens")
    return out
