"""
Candidate peptides: masses, FASTA digestion, decoy sequences and the
precursor-mass index used to pick candidates for a spectrum.
"""

import itertools
import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from .shuffling import RandomSource, fisher_yates, make_rng

logger = logging.getLogger(__name__)

H2O_MASS = 18.010565

# Amino acid masses (monoisotopic, unmodified)
BASE_AA_MASSES = {
    'A': 71.037114, 'R': 156.101111, 'N': 114.042927, 'D': 115.026943,
    'C': 103.009185, 'E': 129.042593, 'Q': 128.058578, 'G': 57.021464,
    'H': 137.058912, 'I': 113.084064, 'L': 113.084064, 'K': 128.094963,
    'M': 131.040485, 'F': 147.068414, 'P': 97.052764, 'S': 87.032028,
    'T': 101.047679, 'W': 186.079313, 'Y': 163.063329, 'V': 99.068414
}

UNKNOWN_AA_MASS = 100.0
DECOY_PREFIX = 'decoy_'

# Trypsin cleaves after K and R, but not before P
TRYPSIN_PATTERN = r'(?<=[KR])(?!P)'


class MassTable:
    """Residue masses with static modifications applied."""

    def __init__(self, static_modifications: Optional[Dict[str, float]] = None):
        self.static_modifications = dict(static_modifications or {})
        self.aa_masses = BASE_AA_MASSES.copy()
        for aa, mod_mass in self.static_modifications.items():
            if aa not in self.aa_masses:
                raise ValueError(f"Unknown amino acid: {aa}")
            self.aa_masses[aa] += mod_mass

    def residue_mass(self, aa: str) -> float:
        return self.aa_masses.get(aa, UNKNOWN_AA_MASS)

    def residue_masses(self, sequence: str, modifications: Optional[Dict[int, Tuple[float, ...]]] = None) -> List[float]:
        """Per-residue masses including static and variable modifications."""
        masses = [self.residue_mass(aa) for aa in sequence]
        for position, deltas in (modifications or {}).items():
            masses[position] += sum(deltas)
        return masses

    def peptide_mass(self, sequence: str, modifications: Optional[Dict[int, Tuple[float, ...]]] = None) -> float:
        """Monoisotopic neutral mass of a peptide."""
        return H2O_MASS + sum(self.residue_masses(sequence, modifications))


class Peptide:
    """
    A candidate peptide with the proteins it came from.

    modifications maps a 0-based residue position to the tuple of variable
    modification mass deltas on that residue.
    """

    def __init__(self, sequence: str, protein_ids, mass: float,
                 prev_aa: str = '-', next_aa: str = '-',
                 modifications: Optional[Dict[int, Tuple[float, ...]]] = None,
                 is_decoy: bool = False, unshuffled_sequence: Optional[str] = None):
        self.sequence = sequence
        if isinstance(protein_ids, str):
            protein_ids = [protein_ids]
        self.protein_ids = list(protein_ids)
        self.mass = mass
        self.prev_aa = prev_aa
        self.next_aa = next_aa
        self.modifications = {int(k): tuple(v) for k, v in (modifications or {}).items()}
        self.is_decoy = is_decoy
        self.unshuffled_sequence = unshuffled_sequence if unshuffled_sequence is not None else sequence

    def __repr__(self):
        return f"Peptide({self.sequence!r}, proteins={self.protein_id!r}, mass={self.mass:.4f})"

    def __len__(self):
        return len(self.sequence)

    @property
    def protein_id(self) -> str:
        return ';'.join(self.protein_ids)

    @property
    def num_proteins(self) -> int:
        return len(self.protein_ids)

    @property
    def modification_key(self) -> Tuple[Tuple[int, Tuple[float, ...]], ...]:
        return tuple(sorted(self.modifications.items()))


def read_fasta(fasta_file: str) -> Dict[str, str]:
    """Read protein sequences from FASTA file."""
    proteins = {}
    current_id = None
    current_seq = []

    with open(fasta_file, 'r') as f:
        for line in f:
            line = line.strip()
            if line.startswith('>'):
                if current_id:
                    proteins[current_id] = ''.join(current_seq)
                current_id = line[1:].split()[0]
                current_seq = []
            else:
                current_seq.append(line)

        if current_id:
            proteins[current_id] = ''.join(current_seq)

    return proteins


def digest_protein(sequence: str, protein_id: str, mass_table: MassTable,
                   missed_cleavages: int = 2, min_length: int = 6, max_length: int = 50) -> List[Peptide]:
    """Digest protein sequence into tryptic peptides with flanking residues."""
    peptides = []
    fragments = [f for f in re.split(TRYPSIN_PATTERN, sequence) if f]

    starts = []
    offset = 0
    for fragment in fragments:
        starts.append(offset)
        offset += len(fragment)

    for i in range(len(fragments)):
        for j in range(i, min(i + missed_cleavages + 1, len(fragments))):
            peptide_seq = ''.join(fragments[i:j + 1])
            if not min_length <= len(peptide_seq) <= max_length:
                continue
            begin = starts[i]
            end = begin + len(peptide_seq)
            prev_aa = sequence[begin - 1] if begin > 0 else '-'
            next_aa = sequence[end] if end < len(sequence) else '-'
            peptides.append(Peptide(peptide_seq, protein_id, mass_table.peptide_mass(peptide_seq),
                                    prev_aa=prev_aa, next_aa=next_aa))

    return peptides


def apply_variable_modifications(peptide: Peptide, variable_mods: Dict[str, float],
                                 mass_table: MassTable, max_mods: int = 1) -> List[Peptide]:
    """
    Expand a peptide into its unmodified form plus every form carrying up to
    max_mods variable modifications.
    """
    forms = [peptide]
    if not variable_mods or max_mods < 1:
        return forms

    sites = [i for i, aa in enumerate(peptide.sequence) if aa in variable_mods]
    for num_mods in range(1, min(max_mods, len(sites)) + 1):
        for positions in itertools.combinations(sites, num_mods):
            mods = {p: (variable_mods[peptide.sequence[p]],) for p in positions}
            forms.append(Peptide(
                peptide.sequence, peptide.protein_ids,
                mass_table.peptide_mass(peptide.sequence, mods),
                prev_aa=peptide.prev_aa, next_aa=peptide.next_aa,
                modifications=mods,
            ))
    return forms


def make_peptides_non_redundant(all_peptides: List[Peptide]) -> List[Peptide]:
    """
    Make peptide list non-redundant by merging protein accessions of
    identical (sequence, modifications) forms.

    The first occurrence keeps its flanking residues.
    """
    peptide_groups = defaultdict(list)
    for peptide in all_peptides:
        peptide_groups[(peptide.sequence, peptide.modification_key)].append(peptide)

    non_redundant_peptides = []
    for peptides in peptide_groups.values():
        first = peptides[0]
        if len(peptides) == 1:
            non_redundant_peptides.append(first)
            continue
        protein_ids = sorted({pid for p in peptides for pid in p.protein_ids})
        non_redundant_peptides.append(Peptide(
            first.sequence, protein_ids, first.mass,
            prev_aa=first.prev_aa, next_aa=first.next_aa,
            modifications=first.modifications,
        ))

    return non_redundant_peptides


def reverse_sequence(sequence: str) -> str:
    """
    Reverse the residues, keeping a C-terminal K/R in place if present.
    """
    if len(sequence) <= 1:
        return sequence
    if sequence[-1] in ('K', 'R'):
        return sequence[:-1][::-1] + sequence[-1]
    return sequence[::-1]


def shuffled_positions(length: int, rng: RandomSource = None) -> List[int]:
    """
    Random permutation of residue positions with the first and last residue
    held in place.
    """
    positions = list(range(length))
    if length > 3:
        fisher_yates(positions, 1, length - 1, rng)
    return positions


def make_decoy_peptide(target: Peptide, rng: RandomSource = None,
                       target_sequences: Optional[Set[str]] = None, max_tries: int = 10) -> Peptide:
    """
    Build a decoy by shuffling the target's interior residues.

    Modifications travel with their residues, so the decoy has the target's
    mass.  When no shuffle differs from the target (and from every sequence
    in target_sequences), reversal is used instead.
    """
    rng = make_rng(rng)
    target_sequences = target_sequences or set()
    sequence = target.sequence

    decoy_sequence = None
    decoy_mods = {}
    for _ in range(max_tries):
        positions = shuffled_positions(len(sequence), rng)
        candidate = ''.join(sequence[p] for p in positions)
        if candidate != sequence and candidate not in target_sequences:
            decoy_sequence = candidate
            decoy_mods = {new: target.modifications[old]
                          for new, old in enumerate(positions) if old in target.modifications}
            break

    if decoy_sequence is None:
        decoy_sequence = reverse_sequence(sequence)
        n = len(sequence) - 1 if sequence[-1:] in ('K', 'R') else len(sequence)
        decoy_mods = {(n - 1 - p if p < n else p): deltas for p, deltas in target.modifications.items()}

    return Peptide(
        decoy_sequence,
        [DECOY_PREFIX + pid for pid in target.protein_ids],
        target.mass,
        prev_aa=target.prev_aa, next_aa=target.next_aa,
        modifications=decoy_mods,
        is_decoy=True,
        unshuffled_sequence=sequence,
    )


class PeptideIndex:
    """Peptides sorted by neutral mass for precursor-window lookup."""

    def __init__(self, peptides: Iterable[Peptide]):
        self.peptides = sorted(peptides, key=lambda p: p.mass)
        self.masses = np.array([p.mass for p in self.peptides])
        self.sequences = {p.sequence for p in self.peptides}
        if self.peptides:
            logger.info(f"Indexed {len(self.peptides)} peptides, mass range: "
                        f"{self.masses[0]:.3f} - {self.masses[-1]:.3f}")

    def __len__(self):
        return len(self.peptides)

    def candidates(self, neutral_mass: float, window: float) -> List[Peptide]:
        """Peptides whose mass lies within +/- window of neutral_mass."""
        left_idx = int(np.searchsorted(self.masses, neutral_mass - window, side='left'))
        right_idx = int(np.searchsorted(self.masses, neutral_mass + window, side='right'))
        return self.peptides[left_idx:right_idx]


def build_peptide_index(fasta_file: str, mass_table: MassTable, missed_cleavages: int = 2,
                        min_length: int = 6, max_length: int = 50,
                        variable_mods: Optional[Dict[str, float]] = None, max_mods: int = 1) -> PeptideIndex:
    """Read, digest, modify and de-duplicate a protein database."""
    proteins = read_fasta(fasta_file)
    logger.info(f"Loaded {len(proteins)} proteins")

    all_peptides = []
    for protein_id, sequence in proteins.items():
        for peptide in digest_protein(sequence, protein_id, mass_table,
                                      missed_cleavages, min_length, max_length):
            all_peptides.extend(apply_variable_modifications(peptide, variable_mods or {}, mass_table, max_mods))
    logger.info(f"Generated {len(all_peptides)} target peptide candidates")

    non_redundant = make_peptides_non_redundant(all_peptides)
    logger.info(f"Non-redundant target peptides: {len(non_redundant)} "
                f"(removed {len(all_peptides) - len(non_redundant)} duplicates)")
    return PeptideIndex(non_redundant)
