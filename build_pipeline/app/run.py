import os
from collections.abc import Sequence
from dataclasses import replace
from typing import Any

from trackkit import (
    ActionExecutor,
    LocalNodeProvider,
    NodeProvider,
    PipelineOrchestrator,
    PipelineResult,
    SubprocessExecutor,
    TrackRunner,
)

from build_pipeline.foundation.config_io import find_repo_root, load_config
from build_pipeline.foundation.logging_utils import (
    close_logger,
    configure_stdio_utf8,
    setup_operational_logger,
)
from build_pipeline.framework.artifacts import (
    append_run_index_entry,
    build_run_index_entry,
    build_run_report,
    generate_run_id,
    write_run_report,
)
from build_pipeline.framework.config import RunConfig, SourceConfig
from build_pipeline.impl.current.tracks import build_tracks, describe_tracks

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def resolve_source(source: SourceConfig) -> SourceConfig:
    """Default the checkout repository to the repo the pipeline is launched from."""

    if source.repository:
        return source
    return replace(source, repository=find_repo_root())


def build_provider(cfg: RunConfig) -> LocalNodeProvider:
    return LocalNodeProvider.from_specs(
        ((node.name, node.labels) for node in cfg.workers.nodes),
        workspace_root=cfg.workers.workspace_root,
    )


def run_pipeline(
    cfg_dict: dict[str, Any],
    *,
    run_id: str | None = None,
    config_meta: dict[str, Any] | None = None,
    only: Sequence[str] = (),
    executor: ActionExecutor | None = None,
    provider: NodeProvider | None = None,
    ambient_env: dict[str, str] | None = None,
) -> PipelineResult:
    run_id = run_id or generate_run_id()
    cfg, cfg_warnings = RunConfig.from_dict(cfg_dict)

    logger, log_file = setup_operational_logger(cfg.run.log_path, run_id)
    try:
        if config_meta:
            logger.info("Config loaded (mode=%s, paths=%s)", config_meta.get("mode"), config_meta.get("paths"))
        for warning in cfg_warnings:
            logger.warning("Config warning: %s", warning)

        source = resolve_source(cfg.source)
        tracks = build_tracks(cfg, source=source, only=only)
        for line in describe_tracks(tracks):
            logger.debug("Plan: %s", line)

        runner = TrackRunner(
            provider=provider or build_provider(cfg),
            executor=executor or SubprocessExecutor(kill_grace_seconds=cfg.run.kill_grace_seconds),
            ambient_env=ambient_env,
            logger=logger,
        )
        result = PipelineOrchestrator(runner, logger=logger).run_all(tracks)

        report_path = os.path.join(cfg.run.report_path, f"{run_id}_report.json")
        write_run_report(
            report_path,
            build_run_report(
                run_id,
                result,
                config_meta=config_meta,
                effective_config=cfg.effective,
                log_file=log_file,
            ),
        )
        append_run_index_entry(
            cfg.run.run_index_path,
            build_run_index_entry(run_id, result, report_path=report_path),
        )
        logger.info("Run report written to %s", report_path)

        for track in result.tracks:
            if track.succeeded:
                continue
            skipped = ", ".join(track.skipped_stages) or "<none>"
            logger.error(
                "Track %s %s at stage %s (%s); skipped: %s",
                track.name,
                track.status,
                track.failed_stage or "<none>",
                track.error or "no error recorded",
                skipped,
            )
        return result
    except Exception:
        logger.exception("Pipeline run %s failed", run_id)
        raise
    finally:
        close_logger(logger)


def exit_code_for(result: PipelineResult) -> int:
    if result.interrupted:
        return EXIT_INTERRUPTED
    return EXIT_OK if result.succeeded else EXIT_FAILED


def main(*, only: Sequence[str] = (), dry_run: bool = False, config_path: str | None = None) -> int:
    configure_stdio_utf8()
    cfg_dict, cfg_meta = load_config(config_path=config_path)

    if dry_run:
        cfg, cfg_warnings = RunConfig.from_dict(cfg_dict)
        for warning in cfg_warnings:
            print(f"warning: {warning}")
        tracks = build_tracks(cfg, source=resolve_source(cfg.source), only=only)
        for line in describe_tracks(tracks):
            print(line)
        return EXIT_OK

    result = run_pipeline(cfg_dict, config_meta=cfg_meta, only=only)
    return exit_code_for(result)


if __name__ == "__main__":
    raise SystemExit(main())
