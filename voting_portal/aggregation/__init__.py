"""Results aggregation: tallies for the admin view and the metrics exporter."""

from .aggregator import CandidateTally, PositionTally, ResultsAggregator, tally_candidates

__all__ = ['CandidateTally', 'PositionTally', 'ResultsAggregator', 'tally_candidates']
