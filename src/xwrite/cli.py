"""Command line interface for the xwrite authoring pipeline."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, Sequence

from dotenv import load_dotenv

from .authoring.metrics import build_pipeline_metrics_dashboard, summarize_pipeline_metrics
from .authoring.orchestrator import AuthoringOrchestrator, PipelineCallbacks, PipelineResult
from .authoring.types import ArticleOutline
from .config import XWriteConfig
from .document import MarkdownDocument
from .io import FileStateStore
from .llm.client import LangChainModelClient, ModelClient
from .llm.mock import MockModelClient
from .llm.providers import build_provider
from .paths import StatePathConfig, resolve_document_path

__all__ = ["main", "build_parser"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xwrite",
        description=(
            "Multi-agent document authoring: plan an outline, draft sections, run consensus "
            "review and fact verification, then revise until the quality gate passes."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default="WARNING",
        help="Logging level for pipeline diagnostics (DEBUG, INFO, WARNING, ...).",
    )
    subparsers = parser.add_subparsers(dest="command")

    write_parser = subparsers.add_parser(
        "write",
        help="Author a document from a natural-language request.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    write_parser.add_argument("request", nargs="?", default=None, help="Writing request text.")
    write_parser.add_argument(
        "--request-file",
        dest="request_file",
        default=None,
        help="Read the writing request from a UTF-8 text file instead.",
    )
    write_parser.add_argument(
        "--document",
        required=True,
        help="Markdown file to write into (created when missing).",
    )
    write_parser.add_argument(
        "--session-id",
        dest="session_id",
        default=None,
        help="Resume key; defaults to the request text.",
    )
    write_parser.add_argument(
        "--yes",
        action="store_true",
        help="Accept the generated outline without prompting.",
    )
    write_parser.add_argument(
        "--max-review-cycles",
        dest="max_review_cycles",
        type=int,
        default=None,
        help="Upper bound on review/revise cycles (env XWRITE_MAX_REVIEW_CYCLES, default 3).",
    )
    write_parser.add_argument(
        "--draft-concurrency",
        dest="draft_concurrency",
        type=int,
        default=None,
        help="Parallel draft workers (capped at 6).",
    )
    write_parser.add_argument(
        "--no-verify",
        dest="verify",
        action="store_false",
        help="Skip per-section fact verification.",
    )
    _register_provider_arguments(write_parser)
    _register_state_argument(write_parser)

    metrics_parser = subparsers.add_parser(
        "metrics",
        help="Show the metrics dashboard for recent runs.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    metrics_parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Print the aggregated summary as JSON.",
    )
    _register_state_argument(metrics_parser)

    return parser


def _register_provider_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--provider",
        default="mock",
        choices=("mock", "openai"),
        help="LLM provider to use.",
    )
    parser.add_argument("--model", default=None, help="Model name or identifier to target.")
    parser.add_argument(
        "--base-url",
        dest="base_url",
        default=None,
        help="Optional base URL for API-compatible providers.",
    )
    parser.add_argument(
        "--api-key-env",
        dest="api_key_env",
        default=None,
        help="Environment variable containing the provider API key.",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=None,
        help="Default sampling temperature for generative providers.",
    )
    parser.add_argument(
        "--max-tokens",
        dest="max_tokens",
        type=int,
        default=None,
        help="Maximum tokens for provider responses.",
    )


def _register_state_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--state-dir",
        dest="state_dir",
        default=None,
        help="Directory for checkpoint, memory and metrics files (env XWRITE_STATE_ROOT).",
    )


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _build_config(args: argparse.Namespace) -> XWriteConfig:
    config = XWriteConfig()
    if args.state_dir:
        config.paths = StatePathConfig(state_dir=Path(args.state_dir))
    if getattr(args, "command", None) != "write":
        return config

    pipeline = config.pipeline
    config.pipeline = replace(
        pipeline,
        draft_concurrency=args.draft_concurrency if args.draft_concurrency is not None else pipeline.draft_concurrency,
        max_review_cycles=args.max_review_cycles if args.max_review_cycles is not None else pipeline.max_review_cycles,
        enable_verification=pipeline.enable_verification and args.verify,
    )
    return config


def _build_client(args: argparse.Namespace) -> ModelClient:
    if args.provider == "mock":
        return MockModelClient()
    api_key = os.getenv(args.api_key_env) if args.api_key_env else None
    if args.api_key_env and not api_key:
        raise ValueError(f"环境变量 {args.api_key_env} 未设置 API Key")
    provider = build_provider(
        model=args.model,
        base_url=args.base_url,
        api_key=api_key,
        temperature=args.temperature,
        max_tokens=args.max_tokens,
    )
    return LangChainModelClient(provider)


def _read_request(args: argparse.Namespace) -> str:
    if args.request_file:
        path = Path(args.request_file)
        if not path.exists():
            raise FileNotFoundError(f"需求文件不存在: {path}")
        return path.read_text(encoding="utf-8").strip()
    if args.request:
        return args.request.strip()
    raise ValueError("请提供写作需求（位置参数或 --request-file）")


def _confirm_outline(auto_confirm: bool) -> Callable[[ArticleOutline, str], bool]:
    def confirm(outline: ArticleOutline, plan_markdown: str) -> bool:
        print(plan_markdown)
        if auto_confirm:
            return True
        try:
            answer = input("确认大纲并开始撰写？[y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes", "是"}

    return confirm


def _console_callbacks(auto_confirm: bool) -> PipelineCallbacks:
    return PipelineCallbacks(
        on_outline_ready=_confirm_outline(auto_confirm),
        on_phase_change=lambda phase, message: print(f"[{phase}] {message}", file=sys.stderr),
        on_section_done=lambda index, total, title: print(f"  ✓ {index + 1}/{total} {title}", file=sys.stderr),
        on_chat_message=print,
    )


def _report(result: PipelineResult, document_path: Path) -> int:
    if result.status == "completed":
        score = result.final_feedback.overall_score if result.final_feedback is not None else None
        gate = "通过" if result.quality_gate_passed else "未通过"
        print(f"文档已保存：{document_path}（评分 {score}，质量门控{gate}）")
        return 0
    print(f"运行状态：{result.status}", file=sys.stderr)
    return 1


def _run_write(args: argparse.Namespace) -> int:
    request = _read_request(args)
    config = _build_config(args)
    document_path = resolve_document_path(args.document)
    document = MarkdownDocument.load(document_path)
    orchestrator = AuthoringOrchestrator(
        _build_client(args),
        document,
        config=config,
        store=FileStateStore(config.paths.ensure()),
        callbacks=_console_callbacks(args.yes),
    )
    try:
        result = asyncio.run(orchestrator.run(request, session_id=args.session_id))
    finally:
        document.save(document_path)
    return _report(result, document_path)


def _run_metrics(args: argparse.Namespace) -> int:
    config = _build_config(args)
    history = FileStateStore(config.paths).load_metrics_history()
    if not history:
        print("暂无运行记录")
        return 0
    if args.as_json:
        print(json.dumps(summarize_pipeline_metrics(history).to_dict(), ensure_ascii=False, indent=2))
    else:
        print(build_pipeline_metrics_dashboard(history[-1], history))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command_map: dict[str, Callable[[argparse.Namespace], int]] = {
        "write": _run_write,
        "metrics": _run_metrics,
    }
    runner = command_map.get(args.command)
    if runner is None:
        parser.print_help()
        return 0

    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return runner(args)
    except (FileNotFoundError, ValueError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
