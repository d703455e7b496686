"""
canvas-eval-core CLI Runner

Minimal CLI that generates a response for one prompt and judges it against
a rubric with the core workflows.

Usage:
    python -m canvas_eval_core.runner --prompt "Explain TCP slow start" --rubric rubrics/networking.json
    python -m canvas_eval_core.runner --prompt-file prompt.txt --rubric rubric.json --model anthropic/claude-sonnet-4-5
    python -m canvas_eval_core.runner --prompt "Say hi" --skip-evals
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable

import pandas as pd
from dotenv import load_dotenv

from canvas_eval_core.domain.constants import ResponseStatus
from canvas_eval_core.domain.entities import EvalItem, GenerationTarget
from canvas_eval_core.infrastructure.model_clients import ModelClient
from canvas_eval_core.infrastructure.storage import InMemoryStore
from canvas_eval_core.rubric_loader import RubricSpec, load_rubric
from canvas_eval_core.use_cases.targets import TargetService
from canvas_eval_core.workflow_config import WorkflowConfig, load_config


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="canvas-eval-core: Generate a response and judge it against a rubric",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--prompt",
        help="Prompt text",
    )
    source.add_argument(
        "--prompt-file",
        help="Path to a text file containing the prompt",
    )
    parser.add_argument(
        "--rubric",
        default=None,
        help="Path to the rubric JSON file",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model used for generation (default: CANVAS_DEFAULT_MODEL from .env)",
    )
    parser.add_argument(
        "--skip-evals",
        action="store_true",
        help="Generate the response without running the rubric",
    )
    parser.add_argument(
        "--output-dir",
        default="results",
        help="Directory for output CSV files (default: results)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show workflow progress logs",
    )
    return parser.parse_args()


def _eval_rows(run_id: str, target: GenerationTarget, evals: list[EvalItem]) -> list[dict]:
    """Flatten eval results into CSV rows"""
    return [
        {
            "run_id": run_id,
            "target_id": target.id,
            "eval_id": item.id,
            "criterion": item.criterion,
            "kind": item.kind.value,
            "required": item.is_required,
            "weight": item.weight,
            "status": item.status.value,
            "score": item.score,
            "explanation": item.explanation,
            "error": item.error,
            "aggregate_score": target.aggregate_score,
            "is_successful": target.is_successful,
        }
        for item in evals
    ]


async def run(
    prompt: str,
    rubric: RubricSpec | None,
    model: str | None,
    skip_evals: bool,
    config: WorkflowConfig,
    client_factory: Callable[[str], ModelClient] | None = None,
) -> tuple[GenerationTarget, list[EvalItem]]:
    """Scaffold a target in an in-memory store and run the submit-prompt workflow"""
    service = TargetService.build(InMemoryStore(), config, client_factory)
    target = await service.create_target(
        model=model or config.models.default_prompt_model,
        success_threshold=rubric.success_threshold if rubric else None,
    )
    for item in rubric.evals if rubric else []:
        await service.add_eval(
            target.id,
            item.criterion,
            kind=item.kind,
            model=item.model,
            is_required=item.required,
            weight=item.weight,
            threshold=item.threshold,
        )

    handle = await service.submit_prompt(target.id, prompt, skip_evals=skip_evals)
    await service.wait(handle)
    return await service.get_target(target.id), await service.list_evals(target.id)


def main() -> None:
    load_dotenv()
    args = parse_args()
    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Load config
    config = load_config()

    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text(encoding="utf-8")
    else:
        prompt = args.prompt

    rubric = load_rubric(args.rubric) if args.rubric else None
    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    results_path = output_dir / f"eval_results_{run_id}.csv"

    print(f"\n=== Generating ===\n")
    print(f"  Model: {args.model or config.models.default_prompt_model}")
    print(f"  Evals: {len(rubric.evals) if rubric else 0}")
    print(f"  Run ID: {run_id}")
    print()

    target, evals = asyncio.run(run(prompt, rubric, args.model, args.skip_evals, config))

    if target.response_status == ResponseStatus.ERROR:
        print(f"ERROR: Generation failed: {target.response_error}")
        sys.exit(1)

    print("=== Response ===\n")
    print(target.response or "(empty)")
    print()

    if args.skip_evals or not evals:
        return

    print("=== Evaluation ===\n")
    print(f"  {'Criterion':<50} {'Kind':<11} {'Req':>4} {'Weight':>7} {'Score':>6} {'Status':>9}")
    print(f"  {'-'*50} {'-'*11} {'-'*4} {'-'*7} {'-'*6} {'-'*9}")
    for item in evals:
        criterion = (item.criterion or "")[:50]
        score = f"{item.score:.2f}" if item.score is not None else "-"
        print(
            f"  {criterion:<50} "
            f"{item.kind.value:<11} "
            f"{'yes' if item.is_required else '':>4} "
            f"{item.weight:>7.2f} "
            f"{score:>6} "
            f"{item.status.value:>9}"
        )
        if item.error:
            print(f"    error: {item.error}")
    print()

    if target.aggregate_score is None:
        print("  Aggregate: no usable score")
    else:
        print(f"  Aggregate: {target.aggregate_score:.3f} | Successful: {target.is_successful}")
    print()

    # Save CSV
    pd.DataFrame(_eval_rows(run_id, target, evals)).to_csv(results_path, index=False)

    print(f"=== Output ===\n")
    print(f"  Eval results: {results_path}")
    print()


if __name__ == "__main__":
    main()
