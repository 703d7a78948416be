import argparse
import json
import os
import sys
from typing import List, Optional

import pandas as pd

from sheet_analyst.intent_router.intent_router import IntentRouter, IntentRouterConfig
from sheet_analyst.lib.dataset import Dataset
from sheet_analyst.lib.pipeline_prompts import load_prompts
from sheet_analyst.lib.prompt_builder import build_analysis_request


def load_dataset(path: str) -> Dataset:
    ext = os.path.splitext(path)[1].lower()
    if ext == ".json":
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        if "fileName" not in payload and "file_name" not in payload:
            payload["fileName"] = os.path.basename(path)
        return Dataset.from_dict(payload)
    if ext in (".csv", ".tsv"):
        df = pd.read_csv(path, sep="\t" if ext == ".tsv" else ",")
        name = os.path.splitext(os.path.basename(path))[0]
        return Dataset.from_frames(os.path.basename(path), {name: df})
    raise ValueError(f"unsupported dataset file: {path}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Show which intent a question routes to and the computed block, without calling the model."
    )
    parser.add_argument("--dataset", required=True, help="Dataset file: {fileName, sheets} JSON, or CSV/TSV.")
    parser.add_argument("--question", required=True, help="Question text to route.")
    parser.add_argument("--show-prompt", action="store_true", help="Also print the assembled model prompt.")
    parser.add_argument("--prompts", default="", help="Optional prompt override file with [name] blocks.")
    parser.add_argument("--json", action="store_true", help="Print the decision as JSON.")
    args = parser.parse_args(argv)

    if not os.path.exists(args.dataset):
        print(f"Dataset not found: {args.dataset}", file=sys.stderr)
        return 2
    question = str(args.question or "").strip()
    if not question:
        print("Question is empty.", file=sys.stderr)
        return 2

    try:
        dataset = load_dataset(args.dataset)
    except (ValueError, OSError) as exc:
        print(f"Could not load dataset: {exc}", file=sys.stderr)
        return 2

    decision = IntentRouter(IntentRouterConfig()).route(question, dataset)
    processed = decision.result.text if decision.hit else None

    if args.json:
        chart = decision.result.chart if decision.hit else None
        print(
            json.dumps(
                {
                    "intent": decision.intent,
                    "reason": decision.reason,
                    "tried": decision.tried,
                    "processed": processed,
                    "chart": chart.to_wire() if chart is not None else None,
                },
                ensure_ascii=False,
                indent=2,
                default=str,
            )
        )
    else:
        print(f"intent: {decision.intent or 'none'} (reason={decision.reason}, tried={','.join(decision.tried) or '-'})")
        if processed:
            print()
            print(processed)

    if args.show_prompt:
        request = build_analysis_request(question, dataset, processed, prompts=load_prompts(args.prompts))
        print()
        print(request.prompt)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
