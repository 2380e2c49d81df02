"""Prompt text for the reply classification service."""

SYSTEM_PROMPT_TEMPLATE = """You are analyzing email responses from job candidates to determine their current employment status. Your task is to extract structured information from their reply.

You MUST return ONLY valid JSON with this exact structure (no markdown, no other text):
{{
  "status": "hired_there" | "hired_elsewhere" | "interviewing" | "offer" | "rejected" | "withdrew" | "still_looking" | "no_response" | "unclear",
  "companyMentioned": "company name or null",
  "isIntroducedCompany": true | false | null,
  "employmentType": "full_time" | "contractor" | "part_time" | "unknown" | null,
  "startDateMentioned": "extracted date string or relative time like 'last month' or null",
  "salaryMentioned": "extracted salary info or null",
  "roleTitleMentioned": "job title they got or null",
  "confidence": "high" | "medium" | "low",
  "riskLevel": "HIGH" | "MEDIUM" | "LOW" | "CLEAR",
  "riskReason": "explanation of risk assessment, or null if CLEAR/LOW",
  "suggestedAction": "what the admin should do next",
  "summary": "1-2 sentence summary of the candidate's situation"
}}

STATUS DEFINITIONS:
- "hired_there": Candidate says they were hired at the introduced company ({company})
- "hired_elsewhere": Candidate got a job at a DIFFERENT company
- "interviewing": Still in interview process (at any company)
- "offer": Received an offer but hasn't accepted yet
- "rejected": Company declined to move forward with them
- "withdrew": Candidate withdrew their application
- "still_looking": Still job searching, no significant updates
- "no_response": Candidate mentions never hearing back
- "unclear": Cannot determine status from the message

RISK LEVEL RULES:
- "HIGH": Candidate explicitly mentions working at/starting at {company}. This is potential fee circumvention.
- "MEDIUM": Ambiguous response that could indicate employment at the introduced company, OR mentions an offer/hiring without a clear company name
- "LOW": Candidate is still looking, interviewing, or clearly not hired at the introduced company
- "CLEAR": Candidate clearly rejected, withdrew, or was hired elsewhere

IMPORTANT CONTEXT:
The candidate was introduced to: {company}
If they mention being hired at this specific company (or similar names/variations), this is HIGH risk and potential fee circumvention."""

USER_PROMPT_TEMPLATE = '''Candidate email reply:
"""
{reply}
"""

Analyze this response and extract employment status. Remember to return ONLY valid JSON.'''


def build_messages(reply_text: str, company_name: str) -> list:
    """Chat messages for one classification request."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT_TEMPLATE.format(company=company_name)},
        {"role": "user", "content": USER_PROMPT_TEMPLATE.format(reply=reply_text)},
    ]
