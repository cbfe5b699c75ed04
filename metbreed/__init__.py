"""metbreed: multi-environment trial analysis for plant breeding."""

from .ammi import PerformsAmmi, performs_ammi, predict_ammi
from .anova import anova_ind
from .correlation import can_corr, colindiag, lpcor
from .data import TrialDataset
from .factanal import ge_factanal
from .report import print_report
from .selection import fai_blup
from .stability import fox, shukla

__all__ = [
    "TrialDataset",
    "anova_ind",
    "performs_ammi",
    "predict_ammi",
    "PerformsAmmi",
    "fox",
    "shukla",
    "ge_factanal",
    "fai_blup",
    "can_corr",
    "colindiag",
    "lpcor",
    "print_report",
]
