"""Command-line interface for pyXcorrSearch."""

import argparse
import logging
import os
import sys

from . import __version__
from .config import load_config, parse_mods, setup_logging
from .exceptions import ConfigurationError, SearchError
from .output import create_file, write_processed_spectra
from .peptides import MassTable
from .scoring import STOP_AFTER_STAGES, XCorrScorer
from .search import run_search
from .spectrum import read_spectra

logger = logging.getLogger(__name__)


def parse_charge_states(value: str):
    return [int(c.strip()) for c in value.split(',') if c.strip()]


def cmd_search(args: argparse.Namespace) -> int:
    """Search spectra against a protein database."""
    config = load_config(args.config)
    config = config.updated(
        output_dir=args.output_dir,
        fileroot=args.fileroot,
        overwrite=True if args.overwrite else None,
        top_match=args.top_match,
        num_decoy_files=args.num_decoy_files,
        charge_states=parse_charge_states(args.charge_states) if args.charge_states else None,
        precursor_window=args.precursor_window,
        static_mods=parse_mods(args.static_mods) if args.static_mods is not None else None,
        variable_mods=parse_mods(args.variable_mods) if args.variable_mods is not None else None,
        bin_width=args.bin_width,
        bin_offset=args.bin_offset,
        max_spectra=args.max_spectra,
        compute_pvalues=True if args.compute_pvalues else None,
        feature_file=True if args.feature_file else None,
        seed=args.seed,
    )

    logger.info(f"Using charge states: {config.charge_states}")
    logger.info(f"- Bin width: {config.bin_width:.7f} Th")
    logger.info(f"- Bin offset: {config.bin_offset:.1f}")
    if config.static_mods:
        logger.info("- Static modifications:")
        for aa, mass in config.static_mods.items():
            logger.info(f"    {aa}: +{mass:.6f} Th")
    else:
        logger.info("- Static modifications: None")

    run_search(args.fasta_file, args.spectrum_file, config)
    return 0


def cmd_print_processed_spectra(args: argparse.Namespace) -> int:
    """Write spectra processed as for XCorr in MS2 format."""
    config = load_config(args.config)
    config = config.updated(
        output_dir=args.output_dir,
        overwrite=True if args.overwrite else None,
        charge_states=parse_charge_states(args.charge_states) if args.charge_states else None,
    )
    if args.stop_after not in STOP_AFTER_STAGES:
        raise ConfigurationError(f"Invalid value '{args.stop_after}' for stop-after. "
                                 f"Must be one of {', '.join(STOP_AFTER_STAGES)}.")

    os.makedirs(config.output_dir, exist_ok=True)
    output_name = f"{config.fileroot}.{args.output_file}" if config.fileroot else args.output_file
    handle = create_file(os.path.join(config.output_dir, output_name), config.overwrite)
    if handle is None:
        return 1

    spectra = read_spectra(args.spectrum_file, config.max_spectra)
    scorer = XCorrScorer(MassTable(config.static_mods), bin_width=config.bin_width,
                         bin_offset=config.bin_offset)
    with handle:
        count = write_processed_spectra(handle, spectra, scorer, config.charge_states, args.stop_after)
    logger.info(f"Wrote {count} processed spectra to {handle.name}")
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog='pyxcorrsearch',
        description='Comet-style fast XCorr database search with decoy-based q-values',
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    search_parser = subparsers.add_parser('search', help='Search spectra against a FASTA database')
    search_parser.add_argument('fasta_file', help='FASTA file containing protein sequences')
    search_parser.add_argument('spectrum_file', help='Spectrum file (.mzML, .mgf or .ms2)')
    search_parser.add_argument('-c', '--config', help='Configuration YAML file')
    search_parser.add_argument('-o', '--output-dir', help='Output directory for results')
    search_parser.add_argument('--fileroot', help='Prefix for all output file names')
    search_parser.add_argument('--overwrite', action='store_true', help='Replace existing output files')
    search_parser.add_argument('-n', '--top-match', type=int,
                               help='Number of matches to report per spectrum and charge')
    search_parser.add_argument('-d', '--num-decoy-files', type=int,
                               help='Number of decoy sets to search (0 = targets only)')
    search_parser.add_argument('--charge-states', help='Comma-separated charge states (default: 2,3)')
    search_parser.add_argument('-w', '--precursor-window', type=float,
                               help='Precursor mass window in Da')
    search_parser.add_argument('-s', '--static-mods',
                               help='Static modifications as AA:mass pairs (default: C:57.021464). '
                                    'Use "none" for no modifications.')
    search_parser.add_argument('--variable-mods', help='Variable modifications as AA:mass pairs')
    search_parser.add_argument('-bw', '--bin-width', type=float,
                               help='Mass bin width in Th for spectrum binning (default: 1.0005079)')
    search_parser.add_argument('-bo', '--bin-offset', type=float,
                               help='Bin offset for mass binning (default: 0.4)')
    search_parser.add_argument('-m', '--max-spectra', type=int,
                               help='Maximum number of MS2 spectra to process (0 = all)')
    search_parser.add_argument('--compute-pvalues', action='store_true',
                               help='Compute -log10 Bonferroni p-values from the XCorr distribution')
    search_parser.add_argument('--feature-file', action='store_true',
                               help='Write re-ranking features for the top match of every collection')
    search_parser.add_argument('--seed', type=int, help='Seed for decoy shuffling')

    processed_parser = subparsers.add_parser('print-processed-spectra',
                                             help='Process spectra as for XCorr and print them in MS2 format')
    processed_parser.add_argument('spectrum_file', help='Spectrum file (.mzML, .mgf or .ms2)')
    processed_parser.add_argument('output_file', help='Output MS2 file name')
    processed_parser.add_argument('-c', '--config', help='Configuration YAML file')
    processed_parser.add_argument('-o', '--output-dir', help='Output directory')
    processed_parser.add_argument('--overwrite', action='store_true', help='Replace an existing output file')
    processed_parser.add_argument('--charge-states', help='Comma-separated charge states (default: 2,3)')
    processed_parser.add_argument('--stop-after', default='xcorr',
                                  help=f"Last preprocessing stage, one of {', '.join(STOP_AFTER_STAGES)}")

    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        if args.command == 'search':
            return cmd_search(args)
        elif args.command == 'print-processed-spectra':
            return cmd_print_processed_spectra(args)
        else:
            parser.print_help()
            return 1
    except SearchError as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
