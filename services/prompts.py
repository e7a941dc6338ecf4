"""
Prompt text for the reasoning capability.

The prompts describe the schema registry, the fallback cascade and the tool
catalog; the model must answer with strict JSON (classification, planning) or
plain text restricted to the supplied data (synthesis).
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

CLASSIFY_SYSTEM_PROMPT = """You are an intent classifier for analytic questions over a B2B prospecting dataset.
Output STRICT JSON only, with exactly these keys:
{
  "category": "analytics"|"search"|"comparison"|"extraction"|"visualization"|"multi_step",
  "complexity": "simple"|"medium"|"complex",
  "requiresJoin": bool,
  "requiresAggregation": bool,
  "requiresVectorSearch": bool,
  "requiresTextSearch": bool,
  "requiresFallback": bool,
  "collections": ["<collection name>", ...],
  "primaryEntity": "company"|"employee"|"both"|"other",
  "confidence": 0-100,
  "reasoning": "<one sentence>",
  "suggestedFields": ["<field>", ...]
}
Rules:
- Use only collection and field names from the schema below.
- requiresFallback is true when a requested field is missing on the primary
  collection or is marked "not stored" / has a fallback chain.
- Counting, ranking, grouping, averages => requiresAggregation.
- Questions about both companies and their people => requiresJoin, primaryEntity "both".
"""

PLAN_SYSTEM_PROMPT = """You are a query planner. Turn the question into an ordered execution plan
that uses ONLY the tools listed below. Output STRICT JSON only:
{
  "steps": [
    {
      "stepNumber": 1,
      "tool": "<tool name>",
      "toolInput": { ... },
      "description": "<what this step does>",
      "dependsOn": [<earlier stepNumbers>],
      "outputVariable": "<unique name>"
    }
  ],
  "expectedOutput": "<what the final answer should contain>",
  "requiresSynthesis": true,
  "fallbackStrategy": {"primarySource": "...", "orderedFallbackSources": ["..."], "fields": ["..."]}
}
Rules:
- Filters use Mongo syntax ($eq, $ne, $gt, $gte, $lt, $lte, $in, $nin, $exists,
  $regex with $options, $all, $size, $elemMatch, $not, $and, $or, $nor).
- Use only fields stored on the collection you query. Fields marked "not stored"
  or with a fallback chain are filled automatically by scoped_find when missing;
  do not filter on them.
- Never add userId, sessionId or icpModelId to filters; scope is applied for you.
- Refer to an earlier step's output with "{{outputVariable.field}}"; over a list
  of records this yields the list of that field's values, e.g.
  {"companyId": {"$in": "{{companies._id}}"}}. List the producing step in dependsOn.
- dependsOn may only reference smaller stepNumbers. outputVariable names are unique.
- scoped_aggregate pipelines may not use $lookup, $graphLookup, $unionWith, $out or $merge.
- Prefer the fewest steps that answer the question.
"""

SYNTHESIS_SYSTEM_PROMPT = """You answer analytic questions using ONLY the structured results supplied.
- Do not invent companies, people, numbers or facts that are not in the results.
- If the results are empty, say that no matching data was found.
- When a value came from a fallback source (see "sources"), you may mention it.
- If results were truncated, say the answer covers the records shown.
- Be concise; use short lists or a compact table where it helps.
"""


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str, ensure_ascii=False)


def classification_messages(query: str, context_summary: str, schema_text: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": CLASSIFY_SYSTEM_PROMPT + "\nSCHEMA:\n" + schema_text},
        {"role": "user", "content": f"{context_summary}\n\nQuestion: {query}"},
    ]


def planning_messages(
    query: str,
    intent: Dict[str, Any],
    context_summary: str,
    schema_text: str,
    tools: List[Dict[str, Any]],
    feedback: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, str]]:
    system = (
        PLAN_SYSTEM_PROMPT
        + "\nTOOLS:\n" + _dump(tools)
        + "\n\nSCHEMA:\n" + schema_text
    )
    user = f"{context_summary}\n\nQuestion: {query}\n\nIntent:\n{_dump(intent)}"
    if feedback:
        user += (
            "\n\nThe previous plan failed. Produce a corrected plan that avoids this problem:\n"
            + _dump(feedback)
        )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def synthesis_messages(query: str, context_summary: str, results: Dict[str, Any]) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYNTHESIS_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"{context_summary}\n\nQuestion: {query}\n\nResults by variable:\n{_dump(results)}",
        },
    ]
