"""Command line entry point.

    bastion run [--pipeline NAME_OR_PATH]
    bastion validate [--pipeline NAME_OR_PATH]
    bastion presets
    bastion export RUN_ID --output FILE
    bastion serve [--host HOST] [--port PORT]
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from bastion.config import Config
from bastion.errors import ArtifactError
from bastion.services.pipeline_service import PipelineService
from bastion.trigger import TriggerEvent

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bastion", description="Security-gated CI/CD pipeline runner")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("BASTION_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run", help="Run a pipeline for the current trigger")
    p_run.add_argument("--pipeline", help="Preset name or YAML path (default: BASTION_PIPELINE)")
    p_run.add_argument("--run-id", help="Override the run id")
    p_run.add_argument("--json", action="store_true", help="Print the run as JSON")

    p_validate = sub.add_parser("validate", help="Validate a pipeline without running it")
    p_validate.add_argument("--pipeline", help="Preset name or YAML path (default: BASTION_PIPELINE)")

    sub.add_parser("presets", help="List preset pipelines")

    p_export = sub.add_parser("export", help="Write a run's artifacts to a zip file")
    p_export.add_argument("run_id")
    p_export.add_argument("--output", "-o", required=True)

    p_serve = sub.add_parser("serve", help="Serve the artifact API")
    p_serve.add_argument("--host", default=os.environ.get("HOST", "127.0.0.1"))
    p_serve.add_argument("--port", type=int, default=int(os.environ.get("PORT", 5000)))

    return parser


def _cmd_run(args, service: PipelineService) -> int:
    pipeline = service.load_pipeline(args.pipeline)
    trigger = TriggerEvent.from_env()
    if args.run_id:
        trigger = TriggerEvent(
            run_id=args.run_id,
            revision=trigger.revision,
            ref=trigger.ref,
            event_name=trigger.event_name,
            repository=trigger.repository,
            server_url=trigger.server_url,
        )

    run = service.run(trigger, pipeline)
    if run is None:
        print(f"[SKIP] Trigger does not match pipeline '{pipeline.name}'")
        return 0

    if args.json:
        print(json.dumps(run.to_dict(), indent=2))
    else:
        for result in run.results:
            print(f"  {result.status.value.upper():8} {result.stage_name}")
        print(f"Pipeline {run.verdict.value}: {run.status_counts()}")
    return 0 if run.passed else 1


def _cmd_validate(args, service: PipelineService) -> int:
    pipeline = service.load_pipeline(args.pipeline)
    service.build_graph(pipeline)
    print(f"[OK] Pipeline '{pipeline.name}' ({len(pipeline.stages)} stages)")
    for warning in service.loader.validate_pipeline(pipeline):
        print(f"[WARN] {warning}")
    return 0


def _cmd_presets(args, service: PipelineService) -> int:
    for name in service.loader.list_presets():
        print(name)
    return 0


def _cmd_export(args, service: PipelineService) -> int:
    data = service.artifact_store.export_zip(args.run_id)
    Path(args.output).write_bytes(data)
    print(f"[OK] Wrote {len(data)} bytes to {args.output}")
    return 0


def _cmd_serve(args, service: PipelineService) -> int:
    from bastion import create_app

    app = create_app(service.config, artifact_store=service.artifact_store, run_state=service.run_state)
    print(f"Starting bastion on http://{args.host}:{args.port}")
    app.run(host=args.host, port=args.port)
    return 0


COMMANDS = {
    "run": _cmd_run,
    "validate": _cmd_validate,
    "presets": _cmd_presets,
    "export": _cmd_export,
    "serve": _cmd_serve,
}


def main(argv: Optional[List[str]] = None, service: Optional[PipelineService] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        service = service or PipelineService(Config())
        return COMMANDS[args.command](args, service)
    except (FileNotFoundError, ValidationError, yaml.YAMLError, ValueError) as e:
        # CycleError is a ValueError too
        print(f"[ERR] Invalid pipeline: {e}", file=sys.stderr)
        return 2
    except ArtifactError as e:
        print(f"[ERR] {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
