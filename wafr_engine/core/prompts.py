"""Prompt templates for analysis, IaC generation and best-practice details.

All builders are pure: they only format taxonomy data, retrieved passages and
previously generated content into instruction text.
"""

import json
from typing import Any

from wafr_engine.core.schemas_analysis import QuestionGroup
from wafr_engine.core.schemas_iac import (
    DETAILS_TRUNCATED,
    END_OF_DETAILS_GENERATION,
    END_OF_IAC_GENERATION,
    IAC_TRUNCATED,
    DocumentSection,
)

REVIEW_PREAMBLE = """You are an AWS Cloud Solutions Architect who specializes in reviewing {subject} against the AWS Well-Architected Framework, using a process called the Well-Architected Framework Review (WAFR).
The WAFR process consists of evaluating the provided solution architecture against the 6 pillars of the Well-Architected Framework, namely - Operational Excellence Pillar, Security Pillar, Reliability Pillar, Performance Efficiency Pillar, Cost Optimization Pillar, and Sustainability Pillar - by asking fixed questions for each pillar.
{source_line} Follow the instructions listed under the "instructions" section below."""

REVIEW_INSTRUCTIONS = """<instructions>
1) In the "best_practices_json" section, you are provided with the name of the {count} Best Practices related to the question "{question}" of the Well-Architected Framework. For each Best Practice, determine if it is applied or not in the given {artifact}.
2) For each of the {count} best practices listed in the "best_practices_json" section, respond in the following EXACT JSON format only:
{{
    "bestPractices": [
      {{
        "name": [Exact Best Practice Name as given in the "best_practices_json" section],
        "applied": [Boolean],
        "reasonApplied": [Why is this best practice already applied in the provided {artifact}? (50 words maximum, only when applied=true)],
        "reasonNotApplied": [Why is this best practice not applied in the provided {artifact}? (50 words maximum, only when applied=false)],
        "recommendations": [Risk of not following the best practice, recommendations and examples of how to implement it. (350 words maximum, only when applied=false)]
      }}
    ]
}}

For your reference, below is an example of a JSON-formatted response:
{{
    "bestPractices": [
        {{
        "name": "Implement secure key and certificate management",
        "applied": true,
        "reasonApplied": "An AWS Certificate Manager (ACM) certificate is attached to the Application Load Balancer to enforce HTTPS encryption in transit."
        }},
        {{
        "name": "Prefer hub-and-spoke topologies over many-to-many mesh",
        "applied": false,
        "reasonNotApplied": "There are no details about the network topology or interconnections between multiple VPCs.",
        "recommendations": "If you have multiple VPCs that need to communicate, implement a hub-and-spoke model using transit gateways. A mesh topology increases complexity and the risk of misconfiguration."
        }}
    ]
}}

3) Do not rephrase or summarize the practice name, keep the order of the "best_practices_json" section, and DO NOT skip any of the {count} best practices.
4) Do not make any assumptions or make up information. Base your responses only on the provided {artifact}.
5) You are also provided with a Knowledge Base which has more information about the specific question from the Well-Architected Framework. The relevant parts are provided under the "kb" section.
</instructions>"""

IAC_SYSTEM_PROMPT = """You are an AWS Cloud Solutions Architect who specializes in creating Infrastructure as Code (IaC) templates.
An architecture diagram has been provided along with AWS Well-Architected Framework recommendations for your reference.

Generate a {template_type} template that implements this architecture following AWS best practices. Follow the instructions below when generating the template:

<instructions>
1. If the template you are going to generate is too large, split it into multiple parts, each part starting with "# Section {{number}} - {{description}}".
2. If you complete the template (you are providing the last part of the template), end your response with "{end_marker}".
3. If you need to provide more parts or sections for the template, end your response with "{truncated_marker}".
4. Each of your answers has at least 800 words, unless you are providing the last part of a template.
5. Do not repeat any section or part already provided.
</instructions>

After you complete all parts of the template, all parts you provided will be concatenated into a single {template_type} template."""

IAC_USER_PROMPT = """Based on the architecture diagram and the recommendations within the <recommendations> section below, generate an IaC template.
Consider the {section_count} previously generated sections within the <previous_responses> section below (if any).

<previous_responses>
{previous_sections}
</previous_responses>

<recommendations>
{recommendations}
</recommendations>"""

DETAILS_SYSTEM_PROMPT = """You are an AWS Cloud Solutions Architect who specializes in reviewing {subject} against the AWS Well-Architected Framework. Your answer should be formatted in Markdown.

For the best practice provided in the <bp_recommendation_analysis> section:
1. Provide detailed implementation guidance
2. {examples_instruction}
3. Include risks of not implementing the best practice
4. Provide specific AWS services and features recommendations
5. If you have completed your detailed analysis, add the marker "{end_marker}" at the very end
6. If you have more details to provide, end your response with "{truncated_marker}"

Structure your response as:
# {{Pillar as in the <bp_recommendation_analysis> section}} - {{Best Practice Name as in the <bp_recommendation_analysis> section}}
## Implementation Guidance
[Your guidance here]
## {modifications_heading}
[Your examples here]
## Risks and Recommendations
[Your analysis here]"""

TEXT_EXAMPLES_INSTRUCTION = (
    "Include CloudFormation or Terraform template modification examples based on the document "
    "in the <iac_document> section, using the same language and format as that document"
)


def _best_practices_json(group: QuestionGroup) -> str:
    return json.dumps(
        {
            "pillar": group.pillar,
            "question": group.question_title,
            "bestPractices": group.ordered_practice_names,
        },
        indent=2,
    )


def build_analysis_system_prompt(group: QuestionGroup, document: str | None = None) -> str:
    """
    System prompt for one question group.

    Args:
        group: Question group under review
        document: Template text for text documents; None for diagrams (sent as image)
    """
    if document is None:
        preamble = REVIEW_PREAMBLE.format(
            subject="architecture diagrams",
            source_line="An architecture diagram has been provided.",
        )
        artifact = "architecture diagram"
    else:
        preamble = REVIEW_PREAMBLE.format(
            subject="solution architecture documents",
            source_line=(
                "The content of a CloudFormation or Terraform template document is provided "
                'below in the "uploaded_template_document" section.'
            ),
        )
        artifact = "template document"

    instructions = REVIEW_INSTRUCTIONS.format(
        count=len(group.ordered_practice_names),
        question=group.question_title,
        artifact=artifact,
    )
    prompt = f"{preamble}\n\n{instructions}"
    if document is not None:
        prompt += f"\n\n<uploaded_template_document>\n{document}\n</uploaded_template_document>"
    return prompt


def build_analysis_user_prompt(group: QuestionGroup, passages: list[str], is_image: bool) -> str:
    """User prompt carrying the retrieved passages and the practices to judge."""
    lines = []
    if is_image:
        lines.append(
            "Analyze the provided architecture diagram against the following "
            "Well-Architected best practices."
        )
        lines.append("")
    lines.extend(
        [
            "<kb>",
            "\n\n".join(passages),
            "</kb>",
            "",
            "<best_practices_json>",
            _best_practices_json(group),
            "</best_practices_json>",
        ]
    )
    return "\n".join(lines)


def build_iac_system_prompt(template_type: str) -> str:
    """System prompt for the section-by-section IaC generation loop."""
    return IAC_SYSTEM_PROMPT.format(
        template_type=template_type,
        end_marker=END_OF_IAC_GENERATION,
        truncated_marker=IAC_TRUNCATED,
    )


def build_iac_user_prompt(
    recommendations: list[dict[str, Any]],
    previous_sections: list[DocumentSection],
) -> str:
    """User prompt listing recommendations and every section generated so far."""
    if previous_sections:
        previous = json.dumps([s.model_dump() for s in previous_sections], indent=2)
    else:
        previous = "No previous sections generated yet"

    return IAC_USER_PROMPT.format(
        section_count=len(previous_sections),
        previous_sections=previous,
        recommendations=json.dumps(recommendations, indent=2),
    )


def build_details_system_prompt(template_type: str | None = None, is_image: bool = False) -> str:
    """System prompt for the per-best-practice details loop."""
    if is_image:
        return DETAILS_SYSTEM_PROMPT.format(
            subject="architecture diagrams",
            examples_instruction=f"Include {template_type or 'IaC'} examples",
            end_marker=END_OF_DETAILS_GENERATION,
            truncated_marker=DETAILS_TRUNCATED,
            modifications_heading="Architecture Modifications",
        )
    return DETAILS_SYSTEM_PROMPT.format(
        subject="solution architecture documents",
        examples_instruction=TEXT_EXAMPLES_INSTRUCTION,
        end_marker=END_OF_DETAILS_GENERATION,
        truncated_marker=DETAILS_TRUNCATED,
        modifications_heading="Template Modifications",
    )


def build_details_user_prompt(
    item: dict[str, Any],
    previous_content: str,
    document: str | None = None,
) -> str:
    """User prompt for one details turn; ``document`` is embedded for text sources only."""
    parts = [
        "<bp_recommendation_analysis>",
        json.dumps([item], indent=2),
        "</bp_recommendation_analysis>",
    ]
    if document is not None:
        parts.extend(["", "<iac_document>", document, "</iac_document>"])
    if previous_content:
        parts.extend(["", "Previously generated content:", previous_content])
    return "\n".join(parts)
