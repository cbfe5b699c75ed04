"""Core data structures for multi-environment trial tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd
from tqdm import tqdm

from .config import settings
from .exceptions import InvalidArgumentError
from .qc import check_numeric, check_unique_keys, drop_missing

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]
Columns = Union[str, Sequence[str], None]


def as_column_list(columns: Columns) -> List[str]:
    if columns is None:
        return []
    if isinstance(columns, str):
        return [columns]
    return list(columns)


def iter_traits(
    traits: Sequence[str],
    *,
    verbose: bool = False,
    progress: Optional[ProgressCallback] = None,
    desc: str = "Evaluating trait",
) -> Iterator[Tuple[int, str]]:
    """Yield ``(index, trait)`` pairs, reporting progress after each trait."""
    total = len(traits)
    bar = None
    if progress is None and verbose and total > 1:
        bar = tqdm(total=total, desc=desc, leave=False)
    try:
        for index, trait in enumerate(traits):
            yield index, trait
            if progress is not None:
                progress(index + 1, total, trait)
            elif bar is not None:
                bar.set_postfix_str(trait)
                bar.update(1)
    finally:
        if bar is not None:
            bar.close()


@dataclass
class TrialDataset:
    """A long-format trial table plus the names of its design columns."""

    frame: pd.DataFrame
    env: str
    gen: str
    rep: Optional[str] = None
    block: Optional[str] = None

    def __post_init__(self) -> None:
        missing = [column for column in self.factors if column not in self.frame.columns]
        if missing:
            raise InvalidArgumentError(f"Column(s) not found in data: {', '.join(missing)}")

    @classmethod
    def from_csv(
        cls,
        path: str | Path,
        *,
        env: str,
        gen: str,
        rep: Optional[str] = None,
        block: Optional[str] = None,
        delimiter: str = ",",
    ) -> "TrialDataset":
        frame = pd.read_csv(path, sep=delimiter)
        return cls(frame, env=env, gen=gen, rep=rep, block=block)

    @property
    def factors(self) -> List[str]:
        return [column for column in (self.env, self.gen, self.rep, self.block) if column is not None]

    @property
    def design_columns(self) -> List[str]:
        names = ["ENV", "GEN"]
        if self.rep is not None:
            names.append("REP")
        if self.block is not None:
            names.append("BLOCK")
        return names

    def resolve_traits(self, resp: Columns = None) -> List[str]:
        """Response columns to analyse; every numeric non-design column when ``resp`` is None."""
        if resp is None:
            traits = [
                column
                for column in self.frame.columns
                if column not in self.factors and pd.api.types.is_numeric_dtype(self.frame[column])
            ]
            if not traits:
                raise InvalidArgumentError("No numeric response variable found in data")
            return traits
        traits = as_column_list(resp)
        unknown = [trait for trait in traits if trait not in self.frame.columns]
        if unknown:
            raise InvalidArgumentError(f"Variable(s) not found in data: {', '.join(unknown)}")
        clash = [trait for trait in traits if trait in self.factors]
        if clash:
            raise InvalidArgumentError(f"Design column(s) cannot be analysed as a response: {', '.join(clash)}")
        return traits

    def trait_frame(self, trait: str) -> pd.DataFrame:
        """Frame with standard ENV/GEN/REP[/BLOCK]/Y columns for one trait."""
        frame = check_numeric(self.frame[self.factors + [trait]], [trait])
        frame.columns = self.design_columns + ["Y"]
        frame = drop_missing(frame, list(frame.columns))
        if self.rep is not None:
            check_unique_keys(frame, self.design_columns)
        for column in self.design_columns:
            frame[column] = pd.Categorical(frame[column].astype(str))
        return frame


def resolve_verbose(verbose: Optional[bool]) -> bool:
    return settings.VERBOSE if verbose is None else bool(verbose)
