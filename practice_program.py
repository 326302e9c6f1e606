"""
tunebench - Practice programs
A program is a tempo, a meter and an ordered list of timed exercises. The
runner drives the metronome through them, advancing when each exercise's
duration has elapsed.
"""

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Optional

from config import parse_time_signature
from errors import InvalidConfigurationError
from logging_utils import log_event
from metronome import MetronomeScheduler

EXERCISE_KINDS = ('scale', 'arpeggio', 'interval', 'chord', 'custom')


@dataclass
class Exercise:
    title: str
    duration_minutes: float = 5.0
    notes: str = ''
    kind: str = 'custom'
    options: dict = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return self.duration_minutes * 60.0


@dataclass
class PracticeProgram:
    name: str
    bpm: float = 100.0
    time_signature: str = '4/4'
    key: str = 'C'
    exercises: list = field(default_factory=list)

    @property
    def total_minutes(self) -> float:
        return sum(ex.duration_minutes for ex in self.exercises)

    def validate(self) -> None:
        if not self.name:
            raise InvalidConfigurationError("Program needs a name")
        if self.bpm <= 0:
            raise InvalidConfigurationError(f"bpm must be positive, got {self.bpm}")
        parse_time_signature(self.time_signature)
        for ex in self.exercises:
            if ex.duration_minutes <= 0:
                raise InvalidConfigurationError(
                    f"Exercise '{ex.title}' duration must be positive, got {ex.duration_minutes}")
            if ex.kind not in EXERCISE_KINDS:
                raise InvalidConfigurationError(f"Unknown exercise kind '{ex.kind}'")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PracticeProgram":
        if not isinstance(data, dict) or not data.get('name') or 'exercises' not in data:
            raise InvalidConfigurationError("Program data needs 'name' and 'exercises'")
        exercises = []
        for raw in data['exercises']:
            exercises.append(Exercise(
                title=raw.get('title', 'Custom exercise'),
                duration_minutes=float(raw.get('duration_minutes', 5.0)),
                notes=raw.get('notes', ''),
                kind=raw.get('kind', 'custom'),
                options=dict(raw.get('options', {})),
            ))
        program = cls(
            name=data['name'],
            bpm=float(data.get('bpm', 100.0)),
            time_signature=data.get('time_signature', '4/4'),
            key=data.get('key', 'C'),
            exercises=exercises,
        )
        program.validate()
        return program


def save_program(program: PracticeProgram, path) -> None:
    path = Path(path)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(program.to_dict(), f, indent=2, ensure_ascii=False)
    log_event("INFO", "Program", "Saved", name=program.name, path=path)


def load_program(path) -> PracticeProgram:
    """Raises InvalidConfigurationError for unreadable or malformed files."""
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidConfigurationError(f"Could not read program {path}: {e}") from e
    program = PracticeProgram.from_dict(data)
    log_event("INFO", "Program", "Loaded", name=program.name, exercises=len(program.exercises))
    return program


class ProgramRunner:
    """Walks a PracticeProgram with a metronome running underneath."""

    def __init__(self, program: PracticeProgram, scheduler: MetronomeScheduler,
                 clock: Callable[[], float] = time.monotonic,
                 on_exercise: Optional[Callable[[Optional[Exercise]], None]] = None):
        self.program = program
        self.scheduler = scheduler
        self.clock = clock
        self.on_exercise = on_exercise
        self.index = 0
        self.running = False
        self.finished = False
        self._exercise_started = 0.0
        self._elapsed_before_pause = 0.0

    @property
    def current(self) -> Optional[Exercise]:
        if 0 <= self.index < len(self.program.exercises):
            return self.program.exercises[self.index]
        return None

    def elapsed(self) -> float:
        """Seconds spent in the current exercise."""
        if not self.running:
            return self._elapsed_before_pause
        return self._elapsed_before_pause + self.clock() - self._exercise_started

    def start(self) -> None:
        if not self.program.exercises:
            raise InvalidConfigurationError(f"Program '{self.program.name}' has no exercises")
        self.program.validate()
        self.index = 0
        self.finished = False
        self._elapsed_before_pause = 0.0
        self.scheduler.set_bpm(self.program.bpm)
        self.scheduler.set_time_signature(self.program.time_signature)
        self._begin()
        log_event("INFO", "Program", "Started", name=self.program.name,
                  exercises=len(self.program.exercises), minutes=self.program.total_minutes)
        self._announce()

    def _begin(self) -> None:
        self._exercise_started = self.clock()
        self.running = True
        self.scheduler.start()

    def pause(self) -> None:
        if not self.running:
            return
        self._elapsed_before_pause = self.elapsed()
        self.running = False
        self.scheduler.pause()

    def resume(self) -> None:
        if self.running or self.finished or self.current is None:
            return
        self._begin()

    def stop(self) -> None:
        self.running = False
        self.index = 0
        self._elapsed_before_pause = 0.0
        self.scheduler.stop()

    def poll(self) -> Optional[Exercise]:
        """Advance past every exercise whose time is up; returns the current one."""
        if not self.running:
            return self.current
        now = self.clock()
        advanced = False
        while self.current is not None:
            spent = self._elapsed_before_pause + now - self._exercise_started
            if spent < self.current.duration_seconds:
                break
            self._exercise_started = now - (spent - self.current.duration_seconds)
            self._elapsed_before_pause = 0.0
            self.index += 1
            advanced = True

        if self.current is None:
            self.running = False
            self.finished = True
            self.scheduler.stop()
            log_event("INFO", "Program", "Completed", name=self.program.name)
            if self.on_exercise is not None:
                self.on_exercise(None)
            return None
        if advanced:
            self._announce()
        return self.current

    def _announce(self) -> None:
        exercise = self.current
        log_event("INFO", "Program", "Exercise", index=self.index + 1, title=exercise.title,
                  minutes=exercise.duration_minutes)
        if self.on_exercise is not None:
            self.on_exercise(exercise)
