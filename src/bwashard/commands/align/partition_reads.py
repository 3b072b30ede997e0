import os
from pathlib import Path

import polars as pl
import rich_click as click

from bwashard.pipeline.errors import MalformedInputError
from bwashard.pipeline.partitioner import extract_partition, partition_reads
from bwashard.utils.bio.fastq import count_reads
from bwashard.utils.logging.loggit import log_start_info, setup_logging

REPORT_SCHEMA = {
    "partition": pl.Int64,
    "first_record": pl.Int64,
    "record_count": pl.Int64,
    "file1_start": pl.Int64,
    "file1_end": pl.Int64,
    "file2_start": pl.Int64,
    "file2_end": pl.Int64,
    "read_file1": pl.Utf8,
    "read_file2": pl.Utf8,
}


@click.command(no_args_is_help=True)
@click.option("-1", "--read-file1", required=True, type=click.Path(exists=True, dir_okay=False), help="FASTQ file with the reads (first mates for paired-end data).")
@click.option("-2", "--read-file2", required=False, type=click.Path(exists=True, dir_okay=False), help="FASTQ file with the second mates.")
@click.option("-n", "--partitions", default=1, type=click.IntRange(min=1), help="Number of partitions to write.")
@click.option("-o", "-out", "--output", default=lambda: f"{os.getcwd()}/partitions", type=click.Path(file_okay=False), help="Directory for the partition FASTQ files and partitions.tsv.")
@click.option("-p", "--prefix", default="part", type=str, help="File name prefix: <prefix>-<partition>_<mate>.fastq")
@click.option("--verify", is_flag=True, default=False, help="Re-count the records of every written partition with needletail.")
@click.option("-g", "--log-file", type=click.Path(), default=lambda: f"{os.getcwd()}/bwashard.log", help="Path to save logging messages to. Defaults to the current folder.")
@click.option("-ll", "--log-level", default="info", type=click.Choice(["debug", "info", "warning", "error", "critical"]), help="Log level.")
def partition(read_file1, read_file2, partitions, output, prefix, verify, log_file, log_level):
    """
    Split FASTQ reads into balanced partitions without aligning them.
    Writes one FASTQ per partition (and mate) plus a partitions.tsv report. Useful to check how a run would be split.
    """
    logger = setup_logging(log_file=log_file, log_level=log_level)
    log_start_info(logger, locals())

    output_dir = Path(output).resolve()
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        read_partitions = partition_reads(read_file1, read_file2, partitions)
    except MalformedInputError as e:
        logger.error(f"Cannot partition input: {e}")
        raise SystemExit(1)

    rows = []
    for part in read_partitions:
        mate1 = output_dir / f"{prefix}-{part.ordinal}_1.fastq"
        mate2 = output_dir / f"{prefix}-{part.ordinal}_2.fastq" if part.paired else None
        extract_partition(part, mate1, mate2)
        logger.debug(f"Wrote partition {part.ordinal}: records {part.first_record}-{part.first_record + part.record_count - 1}")

        if verify:
            for path in filter(None, (mate1, mate2)):
                counted = count_reads(path)
                if counted != part.record_count:
                    logger.error(f"{path} holds {counted} reads, expected {part.record_count}")
                    raise SystemExit(1)

        rows.append(
            {
                "partition": part.ordinal,
                "first_record": part.first_record,
                "record_count": part.record_count,
                "file1_start": part.file1.start,
                "file1_end": part.file1.end,
                "file2_start": part.file2.start if part.paired else None,
                "file2_end": part.file2.end if part.paired else None,
                "read_file1": str(mate1),
                "read_file2": str(mate2) if mate2 else None,
            }
        )

    report = output_dir / "partitions.tsv"
    pl.DataFrame(rows, schema=REPORT_SCHEMA).write_csv(report, separator="\t")

    logger.info(f"[bold green]✓[/bold green] Wrote {len(read_partitions)} partitions")
    logger.info(f"[bold blue]Output:[/bold blue] {output_dir}")
