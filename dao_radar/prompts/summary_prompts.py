# prompts/summary_prompts.py
SUMMARY_SYSTEM_PROMPT = (
    "You are a governance proposal analyst. Summarize the following DAO proposal in plain English. "
    'Return JSON with "summary" (2-3 sentences) and "impact" (Low/Medium/High with brief reason). '
    "Only return valid JSON, nothing else."
)


def get_summary_user_prompt(title: str, description: str) -> str:
    return f"""Proposal Title: {title}

Proposal Description:
{description}"""
