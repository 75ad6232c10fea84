from typing import List, Mapping, Any

from ..core.models import (
    AppMode, Diagnosis, EmployeeProfile, MbtiQuestion, UserInputData
)

MBTI_CLASSIFICATION_PROMPT = """
You are an experienced MBTI expert. Analyse the user's answers to the questions below
and identify the user's MBTI type as four letters (for example ISTJ or ENFP).
Reply with the four letters only. Do not include any other text.
"""

DIAGNOSIS_PROMPT = """
You are a world-class personality analyst and organisational consultant.
You combine several indicators (MBTI, zodiac sign, blood type, gender and eto) to analyse the potential of the {target} from many angles.
Based on the personal information of the {target} provided below, and on the optional company context (including industry) and team information, diagnose the {target}'s character and how likely they are to thrive at that company.
Do not mention that several diagnostic methods are combined; write naturally, as if this were one refined diagnostic system.
Phrase weaknesses softly and positively, as "hints for further growth" that widen the person's potential.

If an industry is given, give it top priority and recommend departments in "department_recommendations" using names specific to that industry (for a restaurant, e.g. "Floor" or "Kitchen").
Without that information, recommend based on general job aptitude.

Write every value in {language}. Always answer in exactly this JSON format:
{{
  "title": "A catchy, attractive title describing the {target}'s personality type",
  "overall": "A detailed, positive overview of the personality in about 250 characters.",
  "strengths": ["The three most distinctive strengths as short bullet points", "Strength 2", "Strength 3"],
  "weaknesses": ["Three growth opportunities phrased softly and positively as hints for further growth", "Hint 2", "Hint 3"],
  "ideal_work_style": "The working style in which this person is most comfortable and productive, in about 80 characters.",
  "communication_style": "Characteristics of this person's communication and preferred ways of interacting, in about 80 characters.",
  "department_recommendations": [
    {{"department": "The department where the {target}'s traits are best used", "reason": "A persuasive reason of about 80 characters tied to concrete strengths."}},
    {{"department": "The next most suitable department", "reason": "A concrete reason."}},
    {{"department": "Another possible department", "reason": "A concrete reason."}}
  ],
  "manager_view": {{
    "management_tips": ["Two concrete hints for managing this person", "Hint 2"],
    "potential_risks": ["Two potential risks or challenges when joining a team, from a constructive point of view", "Challenge 2"],
    "ideal_environment": "The workplace environment or team culture in which this person performs best, in about 80 characters.",
    "praise_tips": ["Two tips for praise that raises motivation", "Tip 2"],
    "feedback_tips": ["Two things to keep in mind when giving feedback", "Tip 2"]
  }}
}}
"""

TEAM_BUILDING_PROMPT = """
You are a world-class organisational consultant.
Treat the three requirements given below, "team purpose", "industry" and "team size", as your top-priority guidelines.
Based on the member profiles, propose several optimal team compositions that meet the requirements.

# Instructions
1. Member analysis: analyse every profile in depth and understand each person's strengths, weaknesses and personality.
2. Team composition: choose exactly "team size" members and build the team with the greatest synergy, keeping the purpose and industry in mind.
3. Multiple proposals: propose up to three possible combinations.
4. Industry: role and department names must fit the given industry.

# Output format
Write every value in {language}. Always answer in exactly this JSON format:
{{
  "overall_summary": "About 400 characters explaining, from a professional point of view, how the teams were composed given the purpose, industry and member traits.",
  "suggested_teams": [
    {{
      "team_title": "A catchy, powerful phrase for the team",
      "members": ["Member name 1", "Member name 2", "Member name 3"],
      "reason": "Why this composition is optimal for the purpose, explaining complementary personalities and synergy.",
      "synergy": "The concrete synergy and expected results of this team.",
      "team_strengths": ["Strength 1", "Strength 2", "Strength 3"],
      "team_weaknesses": ["Caution 1", "Caution 2", "Caution 3"]
    }}
  ]
}}
"""

HIRING_RECOMMENDATION_PROMPT = """
You are a strategic recruitment consultant.
Give top priority to the "hiring scope" (a department or the whole company) and the "additional team information" given below.
Analyse the existing member profiles and propose what kind of person should be hired to improve the balance, diversity and productivity of that scope.

Points of analysis:
- When the scope is the whole company: focus on fit with the overall culture, versatile skills and the balance of the company-wide talent portfolio.
- When the scope is a department: focus on complementing the existing members' skills and personalities and on solving that team's specific challenges.
- Identify the distribution of MBTI types and the tendencies in strengths and weaknesses.
- Identify the skills and perspectives the current team lacks.

Write every value in {language}. Always answer in exactly this JSON format:
{{
  "team_analysis_summary": "A summary of about 300 characters of the current team's strengths and challenges.",
  "ideal_candidate_profile": {{
    "title": "A catchy title describing the ideal candidate",
    "mbti_suggestion": "The recommended MBTI type or tendency",
    "key_strengths": ["The three most important strengths to look for", "Strength 2", "Strength 3"],
    "reasoning": "About 200 characters on why this person is essential for the current team."
  }}
}}
"""

_OPTIONAL_SECTIONS = [
    ("strengths_context", "What the person says they can become absorbed in"),
    ("challenges_context", "What the person says demotivates them"),
    ("company_context", "Company and industry information (take this into account)"),
    ("team_context", "Information about the team they will join (take this into account)"),
]

def get_diagnosis_prompt(mode: AppMode, language: str) -> str:
    """System instruction for a comprehensive diagnosis in the given mode"""
    target = "candidate" if mode == AppMode.RECRUITMENT else "person"
    return DIAGNOSIS_PROMPT.format(target=target, language=language)

def format_user_data(data: UserInputData) -> str:
    """Serialize input fields, skipping optional ones left empty"""
    lines = [
        "Subject information:",
        f"- Gender: {data.gender}",
        f"- Blood type: {data.blood_type}",
        f"- Zodiac sign: {data.zodiac}",
        f"- Eto: {data.eto}",
        f"- MBTI: {data.mbti or 'Unknown'}",
    ]
    if data.industry and data.industry != "Not specified":
        lines.append(f"- Industry: {data.industry}")
    if data.department:
        lines.append(f"- Department: {data.department}")
    if data.years_of_service is not None:
        lines.append(f"- Years of service: {data.years_of_service}")

    prompt = "\n".join(lines) + "\n"
    for field, heading in _OPTIONAL_SECTIONS:
        value = getattr(data, field)
        if value and value.strip():
            prompt += f"\n{heading}:\n{value.strip()}\n"
    return prompt

def format_mbti_answers(questions: List[MbtiQuestion], answers: Mapping[Any, Any]) -> str:
    formatted = "User answers:\n\n"
    for question in questions:
        answer = answers.get(question.id, answers.get(str(question.id)))
        formatted += (
            f"Question {question.id} ({question.category.value}): "
            f"{question.pole_a.text} / {question.pole_b.text}\n"
        )
        formatted += f"Answer: {answer if answer is not None else 'N/A'}\n\n"
    return formatted

def format_team_profiles(profiles: List[Diagnosis], purpose: str, industry: str,
                         team_size: int, department: str) -> str:
    formatted = (
        "## Team requirements\n"
        f"- Team purpose: {purpose}\n"
        f"- Industry: {industry}\n"
        f"- Target department: {department or 'Not specified'}\n"
        f"- Team size: {team_size}\n\n"
        f"## Member profiles ({len(profiles)} in total)\n\n"
    )
    for profile in profiles:
        formatted += (
            "---\n"
            f"- Member name: {profile.name}\n"
            f"- Personality type: {profile.title}\n"
            f"- Overall: {profile.overall}\n"
            f"- Strengths: {', '.join(profile.strengths)}\n"
            f"- Growth hints: {', '.join(profile.weaknesses)}\n"
            "---\n"
        )
    return formatted

def scope_members(members: List[EmployeeProfile], department: str) -> List[EmployeeProfile]:
    """Members inside the hiring scope; "all" or blank means the whole company"""
    if department in ("", "all"):
        return list(members)
    return [m for m in members if m.department == department]

def format_existing_team(members: List[EmployeeProfile], department: str, team_context: str) -> str:
    """Describe the existing members within the hiring scope"""
    relevant = scope_members(members, department)
    scope = "Whole company" if department in ("", "all") else f'Department "{department}"'

    formatted = (
        "## Hiring background\n"
        f"- Hiring scope: {scope}\n"
        f"- Additional team information: {team_context or 'None'}\n\n"
        "## Existing member profiles:\n\n"
    )
    for member in relevant:
        formatted += (
            "---\n"
            f"Member name: {member.name}\n"
            f"Department: {member.department}\n"
            f"MBTI: {member.mbti}\n"
            f"Personality type: {member.diagnosis.title}\n"
            f"Overall: {member.diagnosis.overall}\n"
            f"Strengths: {', '.join(member.diagnosis.strengths)}\n"
            "---\n"
        )
    return formatted
