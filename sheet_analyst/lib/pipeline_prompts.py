import re
from typing import Dict

CHART_SPEC_SENTINEL = "CHART_SPEC:"

DEFAULT_ANALYST_INTRO = (
    "You are an expert data analyst. Analyze the following spreadsheet data and answer the user's question."
)

DEFAULT_ANALYST_INSTRUCTIONS = (
    "1. ALWAYS analyze the question to determine if filtering, sorting, or aggregation is needed\n"
    "2. For \"top N\" queries: sort data and return exact top results with rankings\n"
    "3. For filtering queries: apply filters and show only matching data\n"
    "4. For comparison queries: group and compare data segments\n"
    "5. For trend analysis: identify patterns and changes over time\n"
    "6. ALWAYS provide specific numbers, percentages, and data points\n"
    "7. When a \"Processed Data for Query\" block is present, its numbers were computed over the full "
    "dataset; use them as the source of truth instead of the sample rows\n"
    "8. Do the analysis yourself and state the result. NEVER tell the user how to do the analysis "
    "(no spreadsheet formulas, no step-by-step instructions, no suggestions to use another tool)\n"
    "9. For visualization requests or when data would benefit from charts, include a chart specification\n"
    "10. Chart types to consider:\n"
    "   - Bar charts: for comparisons, rankings, categories\n"
    "   - Line charts: for trends over time, continuous data\n"
    "   - Pie charts: for proportions, percentages, parts of whole\n"
    "   - Area charts: for cumulative data, stacked comparisons\n"
    "11. Use processed/filtered data for charts, ensure data is properly formatted\n"
    "12. Include meaningful titles and labels for charts"
)

DEFAULT_CHART_FORMAT = (
    "If a chart is needed, format your response as:\n"
    "TEXT_RESPONSE\n"
    "\n"
    f"{CHART_SPEC_SENTINEL} {{\n"
    '  "type": "bar|line|pie|area",\n'
    '  "title": "Chart Title",\n'
    '  "data": [array of objects with the data to chart],\n'
    '  "xKey": "x-axis field name",\n'
    '  "yKey": "y-axis field name",\n'
    '  "dataKey": "value field for pie charts",\n'
    '  "nameKey": "name field for pie charts"\n'
    "}\n"
    f"Write {CHART_SPEC_SENTINEL} at most once, only before the chart object, and put nothing after the object."
)

DEFAULT_ANSWER_CUE = "Answer the question now:"

PROMPT_NAMES = ("analyst_intro", "analyst_instructions", "chart_format", "answer_cue")


def default_prompts() -> Dict[str, str]:
    return {
        "analyst_intro": DEFAULT_ANALYST_INTRO,
        "analyst_instructions": DEFAULT_ANALYST_INSTRUCTIONS,
        "chart_format": DEFAULT_CHART_FORMAT,
        "answer_cue": DEFAULT_ANSWER_CUE,
    }


def read_prompts(path: str) -> Dict[str, str]:
    """Parse ``[name] ... [/name]`` blocks; a missing file yields no overrides."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return {}
    prompts: Dict[str, str] = {}
    for match in re.finditer(r"\[(?P<name>[a-z_]+)\]\s*(?P<body>.*?)\s*\[/\1\]", text, re.S):
        prompts[match.group("name")] = match.group("body").strip()
    return prompts


def load_prompts(path: str = "") -> Dict[str, str]:
    prompts = default_prompts()
    if path:
        overrides = read_prompts(path)
        prompts.update({k: v for k, v in overrides.items() if k in PROMPT_NAMES and v})
    return prompts
