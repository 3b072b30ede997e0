import os
import signal
from contextlib import contextmanager
from pathlib import Path

import rich_click as click
from click.core import ParameterSource

from bwashard.pipeline.aligner import BwaRunner
from bwashard.pipeline.context import SUPPORTED_ALGORITHMS, AlignmentJobContext
from bwashard.pipeline.errors import MalformedInputError, PartitionFailure, RunCancelled
from bwashard.pipeline.orchestrator import Orchestrator
from bwashard.pipeline.publisher import merge_sam_files
from bwashard.pipeline.scheduler import WorkerPoolScheduler
from bwashard.utils.config import BaseConfig
from bwashard.utils.logging.loggit import log_start_info
from bwashard.utils.various import check_dependencies

INDEX_EXTENSIONS = (".amb", ".ann", ".bwt", ".pac", ".sa")


class AlignConfig(BaseConfig):
    def __init__(self, **kwargs):
        super().__init__(
            output=kwargs.get("output"),
            config_file=kwargs.get("config_file"),
            threads=kwargs.get("threads") or 1,
            log_file=kwargs.get("log_file"),
            tmp_dir=kwargs.get("tmp_dir"),
            overwrite=kwargs.get("overwrite") or False,
            log_level=kwargs.get("log_level") or "info",
        )
        self.read_file1 = Path(kwargs["read_file1"]).resolve()
        self.read_file2 = Path(kwargs["read_file2"]).resolve() if kwargs.get("read_file2") else None
        self.index = kwargs["index"]
        self.algorithm = kwargs.get("algorithm") or "mem"
        self.partitions = kwargs.get("partitions") or 1
        self.retries = kwargs.get("retries") or 0
        self.app_name = kwargs.get("app_name") or "bwashard"
        self.app_id = kwargs.get("app_id")
        self.bwa_path = kwargs.get("bwa_path") or "bwa"
        self.bwa_threads = kwargs.get("bwa_threads") or 1
        self.bwa_args = kwargs.get("bwa_args") or ""
        self.stage_timeout = kwargs.get("stage_timeout")
        self.merge = kwargs.get("merge") or False
        self.summary = kwargs.get("summary")

    @property
    def paired(self) -> bool:
        return self.read_file2 is not None

    def to_context(self) -> AlignmentJobContext:
        return AlignmentJobContext.create(
            app_name=self.app_name,
            output_dir=self.output if not self.is_local_output else str(Path(self.output).resolve()),
            algorithm=self.algorithm,
            paired=self.paired,
            app_id=self.app_id,
            tmp_dir=self.tmp_dir,
            index_path=self.index,
            bwa_path=self.bwa_path,
            bwa_threads=self.bwa_threads,
            bwa_args=self.bwa_args,
        )


def merge_config_file(ctx: click.Context, params: dict) -> dict:
    """Fill parameters left at their defaults from ``--config-file``; explicit options win."""
    config_file = params.get("config_file")
    if not config_file:
        return params
    values = BaseConfig.load(config_file)
    unknown = sorted(set(values) - set(params))
    if unknown:
        raise click.BadParameter(f"unknown keys: {', '.join(unknown)}", param_hint="--config-file")
    options = {param.name: param for param in ctx.command.params}
    for key, value in values.items():
        if ctx.get_parameter_source(key) not in (ParameterSource.DEFAULT, ParameterSource.DEFAULT_MAP, None):
            continue
        try:
            # same conversion and checks as the command-line value would get
            params[key] = options[key].type_cast_value(ctx, value)
        except click.BadParameter as e:
            raise click.BadParameter(f"{key}: {e.message}", ctx=ctx, param_hint="--config-file") from e
    return params


@contextmanager
def cancel_on_signals(orchestrator: Orchestrator):
    """Route SIGINT/SIGTERM to ``orchestrator.cancel`` while the run is active."""
    def handler(signum, frame):
        orchestrator.cancel()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, handler)
        except ValueError:
            # not in the main thread; the caller cancels directly
            pass
    try:
        yield
    finally:
        for signum, old_handler in previous.items():
            signal.signal(signum, old_handler)


@click.command(no_args_is_help=True)
@click.option("-1", "--read-file1", required=False, type=click.Path(exists=True, dir_okay=False), help="FASTQ file with the reads (first mates for paired-end data). Plain or gzipped.")
@click.option("-2", "--read-file2", required=False, type=click.Path(exists=True, dir_okay=False), help="FASTQ file with the second mates. Giving it switches to paired-end mode.")
@click.option("-i", "--index", required=False, type=str, help="Prefix of the BWA reference index (as passed to `bwa index -p`). Example: -i ref/hg38.fa")
@click.option("-o", "-out", "--output", default=lambda: f"{os.getcwd()}/bwashard_out", type=str, help="Shared output directory: a mounted path or an hdfs:// URI.")
@click.option("-a", "--algorithm", default="mem", type=click.Choice(list(SUPPORTED_ALGORITHMS)), help="BWA algorithm. `aln` runs aln per read file, then samse/sampe.")
@click.option("-n", "--partitions", default=1, type=click.IntRange(min=1), help="Number of read partitions (one alignment task each).")
@click.option("-t", "--threads", default=1, type=click.IntRange(min=1), help="Number of partitions aligned concurrently. Example: -t 8")
@click.option("-bt", "--bwa-threads", default=1, type=click.IntRange(min=1), help="Threads passed to each BWA call with -t.")
@click.option("-w", "--bwa-args", default="", type=str, help='Extra BWA arguments, quoted. Example: -w "-k 19 -M"')
@click.option("-bp", "--bwa-path", default="bwa", type=str, help="BWA executable to run.")
@click.option("-r", "--retries", default=0, type=click.IntRange(min=0), help="How many times a failed partition is retried.")
@click.option("-to", "--stage-timeout", default=None, type=click.IntRange(min=1), help="Timeout for every BWA call in seconds.")
@click.option("--app-name", default="bwashard", type=str, help="Application name used in output file names.")
@click.option("--app-id", default=None, type=str, help="Application id used in output file names. Defaults to local-<epoch ms>; reuse it to overwrite a previous run's outputs.")
@click.option("--tmp-dir", default=None, type=click.Path(file_okay=False), help="Base directory for temporary files. Falls back to the system temp dir when not writable.")
@click.option("--merge", is_flag=True, default=False, help="Also concatenate all partition SAM files into <app-name>-<app-id>.sam (local output only).")
@click.option("--summary", default=None, type=click.Path(dir_okay=False), help="Write a TSV with one row per partition (status, attempts, published path, error).")
@click.option("-ow", "--overwrite", is_flag=True, default=False, help="Do not warn when the output directory already has files.")
@click.option("--config-file", required=False, type=click.Path(exists=True, dir_okay=False), help="JSON file with values for any of these options (command-line values win).")
@click.option("-g", "--log-file", type=click.Path(), default=lambda: f"{os.getcwd()}/bwashard.log", help="Path to save logging messages to. Defaults to the current folder.")
@click.option("-ll", "--log-level", default="info", type=click.Choice(["debug", "info", "warning", "error", "critical"]), help="Log level.")
@click.pass_context
def align(ctx, **params):
    """
    Align FASTQ reads with BWA, one task per read partition.
    Paired-end mates always stay in the same partition. Each partition's SAM is published as
    <app-name>-<app-id>-<partition>.sam in the output directory.
    """
    params = merge_config_file(ctx, params)
    missing = [f"--{name.replace('_', '-')}" for name in ("read_file1", "index") if not params.get(name)]
    if missing:
        raise click.UsageError(f"Missing option(s): {', '.join(missing)}")

    config = AlignConfig(**params)
    logger = config.logger
    log_start_info(logger, config.to_dict())

    check_dependencies([config.bwa_path], logger=logger)
    missing_index = [ext for ext in INDEX_EXTENSIONS if not Path(f"{config.index}{ext}").exists()]
    if missing_index:
        logger.error(f"BWA index {config.index} is incomplete, missing: {', '.join(missing_index)}")
        raise SystemExit(1)

    context = config.to_context()
    orchestrator = Orchestrator(
        context,
        BwaRunner.from_context(context, timeout=config.stage_timeout),
        scheduler=WorkerPoolScheduler(max_workers=config.threads, max_attempts=config.retries + 1),
        summary_path=config.summary,
    )

    try:
        with cancel_on_signals(orchestrator):
            published = orchestrator.run(config.read_file1, config.read_file2, config.partitions)
    except MalformedInputError as e:
        logger.error(f"Cannot partition input: {e}")
        raise SystemExit(1)
    except PartitionFailure as e:
        logger.error(f"Run {context.app_id} failed: {e}")
        for result in e.results:
            if not result.succeeded:
                logger.error(f"  partition {result.ordinal} ({result.status.value}, {result.attempts} attempts): {result.error}")
        raise SystemExit(1)
    except RunCancelled as e:
        logger.error(str(e))
        raise SystemExit(130)

    if config.merge:
        if config.is_local_output:
            merge_sam_files(published, Path(context.output_dir) / f"{context.app_name}-{context.app_id}.sam")
        else:
            logger.warning("--merge only applies to local output directories, skipping")

    logger.info(f"[bold green]✓[/bold green] Aligned {len(published)} partitions")
    logger.info(f"[bold blue]Output:[/bold blue] {context.output_dir}")
    for path in published:
        logger.debug(path)
