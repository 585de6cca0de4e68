from datetime import timedelta
import logging
import typing

import attrs
import numpy as np

from adjflow.errors import ValidationError

__all__ = ["Time", "Schedule"]

logger = logging.getLogger(__name__)


def Time(
    milliseconds: float = 0,
    seconds: float = 0,
    minutes: float = 0,
    hours: float = 0,
    days: float = 0,
    weeks: float = 0,
    years: float = 0,
) -> float:
    """
    Expresses time components as total seconds.

    :param milliseconds: Number of milliseconds.
    :param seconds: Number of seconds.
    :param minutes: Number of minutes.
    :param hours: Number of hours.
    :param days: Number of days.
    :param weeks: Number of weeks.
    :param years: Number of (365-day) years.
    :return: Total time in seconds.
    """
    delta = timedelta(
        weeks=weeks,
        days=days + 365 * years,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        milliseconds=milliseconds,
    )
    return delta.total_seconds()


def _to_time_steps(value: typing.Any) -> typing.Tuple[float, ...]:
    steps = tuple(float(v) for v in value)
    if not steps:
        raise ValidationError("A schedule needs at least one time step.")
    if any(not (dt > 0.0 and np.isfinite(dt)) for dt in steps):
        raise ValidationError("Time steps must be positive and finite.")
    return steps


def _to_controls(
    value: typing.Any,
) -> typing.Tuple[typing.Optional[typing.Tuple[float, ...]], ...]:
    return tuple(None if c is None else tuple(float(v) for v in c) for c in value)


@attrs.frozen(slots=True)
class Schedule:
    """
    Outer time steps of a run and, optionally, the well controls of each step.

    A step without controls keeps the targets the wells were created with.
    """

    time_steps: typing.Tuple[float, ...] = attrs.field(converter=_to_time_steps)
    """Length of each outer step (s)."""
    controls: typing.Tuple[typing.Optional[typing.Tuple[float, ...]], ...] = attrs.field(
        converter=_to_controls
    )
    """Target of every well for each step, or None."""

    @controls.default
    def _default_controls(self) -> typing.Tuple[None, ...]:
        return (None,) * len(self.time_steps)

    def __attrs_post_init__(self) -> None:
        if len(self.controls) != len(self.time_steps):
            raise ValidationError(
                f"Schedule has {len(self.time_steps)} steps but {len(self.controls)} control sets."
            )

    @classmethod
    def uniform(
        cls,
        total_time: float,
        num_steps: int,
        controls: typing.Optional[typing.Sequence[float]] = None,
    ) -> "Schedule":
        """
        Schedule of `num_steps` equal steps.

        :param total_time: Length of the whole schedule (s).
        :param num_steps: Number of outer steps.
        :param controls: Targets applied to every step.
        """
        if num_steps < 1:
            raise ValidationError("A schedule needs at least one time step.")
        per_step = None if controls is None else tuple(controls)
        return cls(
            time_steps=[total_time / num_steps] * num_steps,
            controls=[per_step] * num_steps,
        )

    def __len__(self) -> int:
        return len(self.time_steps)

    def __iter__(
        self,
    ) -> typing.Iterator[typing.Tuple[float, typing.Optional[typing.Tuple[float, ...]]]]:
        return iter(zip(self.time_steps, self.controls))

    @property
    def total_time(self) -> float:
        return float(sum(self.time_steps))

    def with_controls(self, step: int, targets: typing.Sequence[float]) -> "Schedule":
        """Copy of the schedule with the targets of step `step` (0-based) replaced."""
        controls = list(self.controls)
        controls[step] = tuple(float(t) for t in targets)
        return Schedule(time_steps=self.time_steps, controls=controls)
