from .aggregate import SampleSums, aggregate, contribution_terms, window_aggregate
from .explode import explode
from .gradient import GradientRows, loss_gradients
from .join import JoinPolicy, join_parameters
from .score import clamp, interaction_term, raw_score, score

__all__ = [
    "explode",
    "JoinPolicy",
    "join_parameters",
    "contribution_terms",
    "aggregate",
    "window_aggregate",
    "SampleSums",
    "interaction_term",
    "raw_score",
    "clamp",
    "score",
    "GradientRows",
    "loss_gradients",
]
