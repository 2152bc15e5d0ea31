"""Command-line interface for fetching Ensembl sequences and genes."""

import sys
from pathlib import Path

import click

from . import __version__
from .assembly_map import AssemblyMapClient
from .config import Config, create_example_config, get_default_config_path
from .cli_utils import echo, report_dropped, secho, set_quiet_mode, status
from .error_handler import ServiceUnavailable
from .gene import GeneOrchestrator
from .info import InfoClient
from .logging_config import LogTimer, get_logger, log_performance, setup_logging
from .output_formatter import OutputFormatter
from .rest_client import Deadline, ResilientRestClient
from .seq_proxy import SEQ_TYPES, SeqProxy

FETCH_TYPES = ['genomic', 'cdna', 'cds', 'protein']
OUTPUT_FORMATS = ['fasta', 'json', 'features']


def _client(ctx: click.Context) -> ResilientRestClient:
    """Client shared by the subcommand, closed when the context ends."""
    obj = ctx.find_root().obj
    if obj.get('client') is None:
        client = ResilientRestClient(obj['config'])
        obj['client'] = client
        ctx.find_root().call_on_close(client.close)
    return obj['client']


def _deadline(timeout):
    return Deadline(timeout) if timeout else None


def _export_errors(ctx: click.Context, client: ResilientRestClient) -> None:
    report = ctx.find_root().obj.get('error_report')
    if report:
        client.error_handler.export_error_report(report)
        status(f"Error report exported to: {report}")


@click.group(invoke_without_command=True)
@click.option('--config', type=click.Path(exists=True), help='Configuration file path')
@click.option('--generate-config', is_flag=True, help='Generate example configuration file')
@click.option('--domain', envvar='ENSEMBL_DOMAIN', help='Ensembl REST domain (default https://rest.ensembl.org)')
@click.option('--workers', type=int, help='Worker threads for per-sequence feature and xref fetching')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True, help='Suppress all output except errors')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']), help='Logging level')
@click.option('--log-dir', type=click.Path(), help='Directory for log files')
@click.option('--error-report', type=click.Path(), help='Export error report to file')
@click.version_option(version=__version__, prog_name='ensembl-seqproxy')
@click.pass_context
def cli(ctx, config, generate_config, domain, workers, verbose, quiet, log_level, log_dir, error_report):
    """Ensembl sequence fetcher.

    Fetch genomic, cDNA, CDS and protein sequences with their features
    mapped onto them, or whole genes with every transcript.

    Examples:
        ensembl-seqproxy fetch ENST00000288602 --type cds
        ensembl-seqproxy gene BRAF --aligned
    """
    if quiet and verbose:
        click.echo("Error: Cannot use both --quiet and --verbose", err=True)
        sys.exit(1)
    set_quiet_mode(quiet)

    if generate_config:
        config_path = create_example_config()
        echo(f"Generated example configuration file: {config_path}")
        sys.exit(0)

    cfg = Config.from_file(Path(config) if config else get_default_config_path())
    cfg.merge_env_vars()
    cfg.merge_cli_args(domain=domain, workers=workers, log_level=log_level, log_dir=log_dir)

    setup_logging(
        log_level='DEBUG' if verbose else cfg.logging.level,
        log_dir=cfg.logging.directory,
        colors=cfg.logging.colors,
        rotate_logs=cfg.logging.rotate_logs,
        quiet=quiet
    )

    ctx.obj = {'config': cfg, 'client': None, 'error_report': error_report}

    if ctx.invoked_subcommand is None:
        echo(ctx.get_help())


@cli.command()
@click.argument('ids', nargs=-1, required=True)
@click.option('--type', 'seq_type', type=click.Choice(FETCH_TYPES), default='cdna', show_default=True,
              help='Sequence type to fetch')
@click.option('--format', 'output_format', type=click.Choice(OUTPUT_FORMATS), default='fasta', show_default=True,
              help='Output format')
@click.option('--output', '-o', type=click.File('w'), default='-', help='Output file (default stdout)')
@click.option('--timeout', type=float, help='Overall time budget in seconds')
@click.pass_context
def fetch(ctx, ids, seq_type, output_format, output, timeout):
    """Fetch sequences by Ensembl identifier."""
    logger = get_logger('cli')
    client = _client(ctx)
    proxy = SeqProxy(client, SEQ_TYPES[seq_type])

    invalid = [i for i in ids if not proxy.is_valid_reference(i)]
    if invalid:
        secho(f"Warning: not {seq_type} accessions: {', '.join(invalid)}", err=True, fg='yellow')

    try:
        with LogTimer(f"fetch {len(ids)} {seq_type} sequences", logger) as timer:
            batch = proxy.fetch(list(ids), _deadline(timeout))
    except ServiceUnavailable as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)
    log_performance(f"fetch {seq_type}", timer.elapsed, len(batch))

    formatter = OutputFormatter(data_version=client.data_version())
    if output_format == 'fasta':
        formatter.write_fasta(batch.sequences, output)
    elif output_format == 'json':
        formatter.write_json(batch.sequences, output, batch.errors)
    else:
        formatter.write_feature_table(batch.sequences, output)

    report_dropped(batch.errors)
    for accession, warning in batch.warnings.items():
        status(f"Warning: {accession}: {warning}", fg='yellow')
    status(f"Fetched {len(batch)} of {len(ids)} sequences")
    _export_errors(ctx, client)
    if not batch.sequences:
        sys.exit(1)


@cli.command()
@click.argument('query', nargs=-1, required=True)
@click.option('--aligned', is_flag=True, help='Write transcripts as gene-length rows with introns gapped')
@click.option('--format', 'output_format', type=click.Choice(OUTPUT_FORMATS), default='fasta', show_default=True,
              help='Output format')
@click.option('--output', '-o', type=click.File('w'), default='-', help='Output file (default stdout)')
@click.option('--timeout', type=float, help='Overall time budget in seconds')
@click.pass_context
def gene(ctx, query, aligned, output_format, output, timeout):
    """Fetch genes with all transcripts, by gene, transcript or protein id or gene symbol."""
    logger = get_logger('cli')
    client = _client(ctx)
    orchestrator = GeneOrchestrator(client)

    try:
        with LogTimer(f"fetch genes for {' '.join(query)}", logger) as timer:
            result = orchestrator.fetch_genes(list(query), _deadline(timeout))
    except ServiceUnavailable as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)
    log_performance("fetch genes", timer.elapsed, len(result.genes))

    formatter = OutputFormatter(data_version=client.data_version())
    if output_format == 'fasta':
        formatter.write_gene_fasta(result.genes, output, aligned=aligned)
    elif output_format == 'json':
        formatter.write_genes_json(result.genes, output, result.dropped)
    else:
        sequences = []
        for annotated in result.genes:
            sequences.append(annotated.gene)
            sequences.extend(annotated.transcripts)
        formatter.write_feature_table(sequences, output)

    report_dropped(result.dropped)
    for annotated in result.genes:
        status(f"{annotated.gene.name}: {len(annotated.transcripts)} transcript(s)")
    _export_errors(ctx, client)
    if not result.genes:
        sys.exit(1)


@cli.command()
@click.option('--divisions', is_flag=True, help='Also list Ensembl divisions and the domain serving each')
@click.pass_context
def ping(ctx, divisions):
    """Check availability and versions of the configured REST domains."""
    client = _client(ctx)
    domains = [client.domain]
    if client.genomes_domain not in domains:
        domains.append(client.genomes_domain)

    all_available = True
    for domain in domains:
        available = client.is_available(domain)
        all_available = all_available and available
        if not available:
            secho(f"{domain}: unavailable", fg='red')
            continue
        secho(f"{domain}: available", fg='green')
        echo(f"  REST version: {client.rest_version(domain) or 'unknown'}"
             f" (expected {client.expected_rest_version(domain)})")
        echo(f"  Data version: {client.data_version(domain) or 'unknown'}")
        if client.is_rest_major_version_mismatch(domain):
            secho("  Warning: REST major version is newer than supported", fg='yellow')

    if divisions and all_available:
        echo("Divisions:")
        for name, domain in sorted(InfoClient(client).get_divisions().items()):
            echo(f"  {name}: {domain}")

    if not all_available:
        sys.exit(1)


def _format_loci(mapping) -> str:
    return ", ".join(f"{start}-{end}" for start, end in mapping.to_ranges)


@cli.group(name='map')
def map_group():
    """Map regions between assemblies, or from transcripts onto the chromosome."""


@map_group.command()
@click.argument('species')
@click.argument('chromosome')
@click.argument('start', type=int)
@click.argument('end', type=int)
@click.option('--from', 'from_assembly', required=True, help='Assembly of the given region, e.g. GRCh37')
@click.option('--to', 'to_assembly', required=True, help='Assembly to map onto, e.g. GRCh38')
@click.pass_context
def assembly(ctx, species, chromosome, start, end, from_assembly, to_assembly):
    """Position of CHROMOSOME:START-END in another assembly (END < START for the reverse strand)."""
    client = _client(ctx)
    try:
        client.ensure_available()
    except ServiceUnavailable as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)

    mapped = AssemblyMapClient(client).get_assembly_mapping(species, chromosome, from_assembly,
                                                            to_assembly, (start, end))
    _export_errors(ctx, client)
    if mapped is None:
        report_dropped({f"{chromosome}:{start}-{end}": f"not mapped to {to_assembly}"})
        sys.exit(1)
    echo(f"{from_assembly} {chromosome}:{start}-{end}\t{to_assembly} {chromosome}:{mapped[0]}-{mapped[1]}")


@map_group.command()
@click.argument('accession')
@click.argument('start', type=int)
@click.argument('end', type=int)
@click.option('--coordinates', type=click.Choice(['cdna', 'cds']), default='cdna', show_default=True,
              help='Coordinate system of START and END')
@click.option('--division', default='EnsemblVertebrates', show_default=True,
              help='Ensembl division the transcript belongs to')
@click.pass_context
def transcript(ctx, accession, start, end, coordinates, division):
    """Chromosome loci of positions START..END of a transcript."""
    client = _client(ctx)
    mapper = AssemblyMapClient(client, InfoClient(client))
    if coordinates == 'cds':
        loci = mapper.get_cds_mapping(division, accession, start, end)
    else:
        loci = mapper.get_cdna_mapping(division, accession, start, end)

    _export_errors(ctx, client)
    if loci is None:
        report_dropped({accession: f"{coordinates} {start}-{end} could not be mapped"})
        sys.exit(1)
    species = f"{loci.species_id} " if loci.species_id else ""
    echo(f"{accession}:{start}-{end}\t{species}{loci.assembly_id} {loci.chromosome_id}:{_format_loci(loci.mapping)}")


if __name__ == '__main__':
    cli()
