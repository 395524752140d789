"""
Scoring engine and aggregator.

score_table      one row per iteration, one column per measure (macro path)
obs_loss_table   one row per observation, one loss column per measure
aggregate_table  one value (or named vector) per measure, via Measure.aggregate

All three work on fact rows / views and never recompute predictions.
"""

from typing import Any, List, Sequence
import logging

import numpy as np
import pandas as pd

from expstore.constants import PREDICT_SETS, prediction_column
from expstore.data.prediction import subset_predict_sets
from expstore.experiments.fact import FactRow
from expstore.experiments.store import object_column
from expstore.measures import Measure

logger = logging.getLogger(__name__)


# =============================================================================
# Per-iteration scores
# =============================================================================


def score_table(
    rows: Sequence[FactRow],
    measures: Sequence[Measure],
    ids: bool = True,
    conditions: bool = False,
    predictions: bool = True,
    show_uhash: bool = False,
) -> pd.DataFrame:
    """
    Build the per-iteration score table.

    Column order: uhash, task, task_id, learner, learner_id, resampling,
    resampling_id, iteration, prediction_<set>..., warnings, errors,
    <measure ids>. Columns switched off by a flag are absent. The identity
    columns are on by default, so an `iteration`-only table needs
    `ids=False` as well as `predictions=False` and no measures.

    Args:
        rows: Fact rows, ordered.
        measures: Measures to score each iteration with.
        ids: Include the task/learner/resampling objects and their ids.
        conditions: Include lists of warning and error messages.
        predictions: Include one prediction column per predict set.
        show_uhash: Include the experiment hash (multi-experiment tables).
    """
    columns = {}
    if show_uhash:
        columns["uhash"] = [r.uhash for r in rows]
    if ids:
        columns["task"] = object_column([r.task for r in rows])
        columns["task_id"] = [r.task.id for r in rows]
        columns["learner"] = object_column([r.learner for r in rows])
        columns["learner_id"] = [r.learner.id for r in rows]
        columns["resampling"] = object_column([r.resampling for r in rows])
        columns["resampling_id"] = [r.resampling.id for r in rows]
    columns["iteration"] = pd.Series([r.iteration for r in rows], dtype="int64")

    if predictions and rows:
        present = {s for r in rows for s in r.predictions}
        for predict_set in PREDICT_SETS:
            if predict_set in present:
                columns[prediction_column(predict_set)] = object_column(
                    [r.predictions.get(predict_set) for r in rows]
                )

    if conditions:
        columns["warnings"] = object_column([r.learner.warnings for r in rows])
        columns["errors"] = object_column([r.learner.errors for r in rows])

    for measure in measures:
        columns[measure.id] = pd.Series(
            [_score_row(measure, r) for r in rows], dtype="float64"
        )

    return pd.DataFrame(columns)


def _score_row(measure: Measure, row: FactRow) -> float:
    prediction = subset_predict_sets(row.predictions, measure.predict_sets)
    return measure.score(prediction, row.learner)


# =============================================================================
# Per-observation losses
# =============================================================================


def obs_loss_table(
    rows: Sequence[FactRow],
    measures: Sequence[Measure],
    predict_sets: Sequence[str] = ("test",),
    show_uhash: bool = False,
) -> pd.DataFrame:
    """
    One row per observation with one loss column per measure.

    Measures without an observation-wise loss get a NaN column; this is
    not an error.
    """
    frames = []
    for row in rows:
        prediction = subset_predict_sets(row.predictions, predict_sets)
        if prediction is None:
            continue
        frame = prediction.to_frame()
        frame.insert(0, "iteration", row.iteration)
        if show_uhash:
            frame.insert(0, "uhash", row.uhash)
        for measure in measures:
            frame[measure.id] = measure.obs_loss(prediction)
        frames.append(frame)

    if not frames:
        cols = (["uhash"] if show_uhash else []) + ["iteration", "row_ids", "truth"]
        return pd.DataFrame(columns=cols + [m.id for m in measures])
    return pd.concat(frames, ignore_index=True)


# =============================================================================
# Aggregation
# =============================================================================


def aggregate_table(view: Any, measures: Sequence[Measure]) -> pd.Series:
    """
    Aggregate `view` with every measure.

    Each measure decides itself whether it reduces per-iteration scores
    (macro) or scores the pooled prediction (micro). Scalar results are
    named by the measure id; vector results are named '<id>.<name>'.
    An empty measure list gives an empty float Series.
    """
    parts: List[pd.Series] = []
    for measure in measures:
        value = measure.aggregate(view)
        if isinstance(value, pd.Series):
            if len(value) == 1:
                value = pd.Series([float(value.iloc[0])], index=[measure.id])
            else:
                value = pd.Series(
                    value.to_numpy(dtype=np.float64),
                    index=[f"{measure.id}.{name}" for name in value.index],
                )
        else:
            value = pd.Series([float(value)], index=[measure.id])
        parts.append(value)

    if not parts:
        return pd.Series(dtype="float64")
    return pd.concat(parts).astype("float64")
