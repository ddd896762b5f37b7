"""
Command line entry point.

    multienrich run --config run.yaml --de-table dea.csv --features features.tsv --output results/
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from .config import EnrichmentConfig
from .errors import EnrichmentError
from .pipeline import EnrichmentPipeline


def setup_logging(output_dir: Path, level: str = 'INFO') -> Path:
    """Log to stderr and to a dated file in the output directory"""
    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = output_dir / f"multienrich_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stderr),
        ],
    )
    return log_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='multienrich',
        description="Multi-database gene set enrichment of a differential expression table",
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    run = subparsers.add_parser('run', help="Run the full enrichment pipeline")
    run.add_argument('--config', help="YAML file with run options")
    run.add_argument('--de-table', required=True, help="Differential expression table")
    run.add_argument('--features', required=True, help="Feature translation table (accession, symbol, type)")
    run.add_argument('--output', required=True, help="Output directory")
    run.add_argument('--log-level', default='INFO', help="Logging level (default: INFO)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    output_dir = Path(args.output)
    log_file = setup_logging(output_dir, args.log_level)
    logging.info(f"=== MultiEnrich run, log file: {log_file} ===")

    try:
        config = EnrichmentConfig.from_yaml(args.config) if args.config else EnrichmentConfig().validate()
        run = EnrichmentPipeline(config).run(args.de_table, args.features, str(output_dir))
    except (EnrichmentError, FileNotFoundError) as e:
        logging.error(str(e))
        return 2

    if run.bundle.failures:
        logging.warning(f"{len(run.bundle.failures)} analyses failed: {', '.join(sorted(run.bundle.failures))}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
