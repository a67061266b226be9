"""Tests for protein hit assembly."""

import io

import pytest

from pyxcorrsearch.exceptions import CapacityExceededError, ConfigurationError
from pyxcorrsearch.hit import (
    BestPeptideProteinScorer,
    Hit,
    HitCollection,
    SharedPeptideProteinScorer,
    create_protein_scorer,
)
from pyxcorrsearch.match import ScoreType
from pyxcorrsearch.match_collection import MatchCollection


@pytest.fixture
def scored_collection(make_match):
    collection = MatchCollection()
    collection.add_match(make_match('AEPTIDEK', xcorr=4.0, protein_ids=('P1', 'P2')))
    collection.add_match(make_match('AEPTIDEK', xcorr=2.0, protein_ids=('P1', 'P2')))
    collection.add_match(make_match('LLGGSSTR', xcorr=3.0, protein_ids=('P1',)))
    collection.add_match(make_match('VVNNQQEK', xcorr=1.0, protein_ids=('P3',)))
    return collection


class TestHitCollection:
    """Tests for the bounded hit container."""

    def test_capacity(self):
        hits = HitCollection(capacity=1)
        hits.add_hit(Hit('P1', 1.0, 1))
        with pytest.raises(CapacityExceededError):
            hits.add_hit(Hit('P2', 2.0, 1))

    def test_iterators_are_independent(self):
        hits = HitCollection()
        for i in range(3):
            hits.add_hit(Hit(f"P{i}", float(i), 1))
        first = iter(hits)
        next(first)
        assert [h.protein_id for h in hits] == ['P0', 'P1', 'P2']
        assert [h.protein_id for h in first] == ['P1', 'P2']

    def test_hits_are_immutable(self):
        hit = Hit('P1', 1.0, 1)
        with pytest.raises(AttributeError):
            hit.score = 2.0


class TestAssembly:
    """Tests for assembling hits from a match collection."""

    def test_best_peptide_scorer(self, scored_collection):
        hits = HitCollection.from_match_collection(scored_collection, ScoreType.XCORR,
                                                   BestPeptideProteinScorer())
        assert [(h.protein_id, h.score, h.num_peptides) for h in hits] == [
            ('P1', 4.0, 2), ('P2', 4.0, 1), ('P3', 1.0, 1),
        ]

    def test_shared_peptide_scorer(self, scored_collection):
        hits = HitCollection.from_match_collection(scored_collection, ScoreType.XCORR,
                                                   SharedPeptideProteinScorer())
        scores = {h.protein_id: h.score for h in hits}
        # AEPTIDEK's best score is split between P1 and P2
        assert scores == pytest.approx({'P1': 2.0 + 3.0, 'P2': 2.0, 'P3': 1.0})
        assert [h.protein_id for h in hits] == ['P1', 'P2', 'P3']

    def test_default_scorer_is_shared(self, scored_collection):
        hits = HitCollection.from_match_collection(scored_collection, ScoreType.XCORR)
        assert hits.hits[0] == Hit('P1', pytest.approx(5.0), 2)

    def test_empty_collection(self):
        assert len(HitCollection.from_match_collection(MatchCollection(), ScoreType.XCORR)) == 0

    def test_capacity_applies_to_assembly(self, scored_collection):
        with pytest.raises(CapacityExceededError):
            HitCollection.from_match_collection(scored_collection, ScoreType.XCORR, capacity=2)

    def test_write(self, scored_collection):
        hits = HitCollection.from_match_collection(scored_collection, ScoreType.XCORR,
                                                   BestPeptideProteinScorer())
        output = io.StringIO()
        assert hits.write(output)
        assert output.getvalue().splitlines()[0] == 'P1\t4\t2'


class TestProteinScorerFactory:
    """Tests for choosing the aggregation strategy by name."""

    def test_known_names(self):
        assert isinstance(create_protein_scorer('best'), BestPeptideProteinScorer)
        assert isinstance(create_protein_scorer('shared'), SharedPeptideProteinScorer)

    def test_unknown_name(self):
        with pytest.raises(ConfigurationError):
            create_protein_scorer('nth-root')
