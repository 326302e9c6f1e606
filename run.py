#!/usr/bin/env python3
"""
tunebench - practice toolkit for musicians

Command line entry point: a live tuner on the microphone, a metronome with
sample-accurate clicks, practice programs, and offline analysis of recordings.
"""

import argparse
import cProfile
import sys
import time

from config import Config, PitchMethod, StableDisplay, validate_config
from config_persistence import load_config, resolve_program_path, save_config
from errors import TunebenchError
from logging_utils import log_event, set_log_level


def _format_reading(result) -> str:
    reading = result.reading
    if not reading.has_pitch:
        return "  --  no pitch".ljust(60)
    marker = "*" if reading.stable else " "
    line = (f"{marker} {reading.note:<6} {reading.frequency:8.2f} Hz  "
            f"{reading.display_cents:+6.1f} cents")
    if result.report is not None:
        line += f"  THD {result.report.thd * 100:5.2f}%"
    return line.ljust(60)


def run_tuner(config: Config, args) -> int:
    from audio_io import MicrophoneSource
    from pipeline import AnalysisPipeline

    def render(result):
        print(_format_reading(result), end="\r", flush=True)

    source = MicrophoneSource(config)
    pipeline = AnalysisPipeline(config, source, render)
    pipeline.start()
    try:
        while pipeline.capture.is_alive() and not pipeline.token.cancelled:
            time.sleep(0.2)
    except KeyboardInterrupt:
        print()
    finally:
        pipeline.stop()
    return 1 if pipeline.errors else 0


def run_metronome(config: Config, args) -> int:
    from audio_io import ClickPlayer
    from metronome import MetronomeRunner, MetronomeScheduler

    player = ClickPlayer(config.metronome, sample_rate=config.analysis.sample_rate)
    scheduler = MetronomeScheduler(config.metronome, on_beat=player.on_beat)
    runner = MetronomeRunner(scheduler)
    program_runner = None
    if args.program:
        from practice_program import ProgramRunner, load_program

        def announce(exercise):
            if exercise is None:
                print("\nProgram complete.")
            else:
                print(f"\n> {exercise.title} ({exercise.duration_minutes:g} min) {exercise.notes}")

        program = load_program(resolve_program_path(args.program))
        program_runner = ProgramRunner(program, scheduler, on_exercise=announce)

    player.start()
    if program_runner is not None:
        program_runner.start()
    runner.start()
    try:
        deadline = time.monotonic() + args.duration if args.duration else None
        while runner.alive:
            if program_runner is not None and program_runner.poll() is None:
                break
            if deadline is not None and time.monotonic() >= deadline:
                break
            time.sleep(0.1)
    except KeyboardInterrupt:
        print()
    finally:
        runner.stop()
        player.stop()
    return 1 if runner.error else 0


def load_wav(path):
    """Read a WAV file as a mono SampleFrame scaled to [-1, 1]."""
    import numpy as np
    from scipy.io import wavfile

    from frames import SampleFrame

    rate, data = wavfile.read(path)
    channels = data.shape[1] if data.ndim > 1 else 1
    if data.dtype.kind == 'i':
        data = data / float(2 ** (8 * data.dtype.itemsize - 1))
    elif data.dtype.kind == 'u':
        # 8-bit WAV is unsigned, centred on 128
        data = (data.astype(np.float64) - 128.0) / 128.0
    return SampleFrame.from_interleaved(data.reshape(-1), channels, rate)


def run_analyze(config: Config, args) -> int:
    from feedback import build_feedback
    from input_slots import SlotCollection

    slots = SlotCollection(config, initial_slots=0)
    for path in args.files:
        slot = slots.add_slot()
        slots.load(slot.index, load_wav(path))
    session = slots.analyze_all()
    print(build_feedback(session, config.tuner.note_naming_system).render_text())
    return 0


def run_devices(config: Config, args) -> int:
    from audio_io import list_devices

    print("Available Audio Devices:\n")
    for index, name, inputs, outputs, rate in list_devices():
        print(f"[{index}] {name}")
        print(f"    Input: {inputs} channels, Output: {outputs} channels")
        print(f"    Default SR: {rate} Hz")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run tunebench")
    parser.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR (default: from config)")
    parser.add_argument("--save-config", action="store_true",
                        help="Persist the effective settings to ~/.tunebench/config.json")
    parser.add_argument("--profile", action="store_true", help="Enable cProfile and save stats to --profile-out")
    parser.add_argument("--profile-out", default="profile.prof",
                        help="Path to save cProfile stats (default: profile.prof)")
    sub = parser.add_subparsers(dest="command", required=True)

    tuner = sub.add_parser("tuner", help="Live tuner on the input device")
    tuner.add_argument("--reference", type=float, help="Reference pitch for A4 in Hz")
    tuner.add_argument("--naming", choices=["en", "solfege", "de", "jp"], help="Note naming system")
    tuner.add_argument("--method", choices=[m.name.lower() for m in PitchMethod], help="Pitch method")
    tuner.add_argument("--freeze-when-stable", action="store_true",
                       help="Ease the needle to zero while the pitch is stable")
    tuner.add_argument("--device", type=int, help="Input device index")
    tuner.set_defaults(handler=run_tuner)

    metronome = sub.add_parser("metronome", help="Click track")
    metronome.add_argument("--bpm", type=float, help="Tempo in beats per minute")
    metronome.add_argument("--time-signature", help="Meter such as 3/4")
    metronome.add_argument("--duration", type=float, help="Stop after this many seconds")
    metronome.add_argument("--program",
                           help="Practice program JSON file, or the name of one saved in ~/.tunebench/programs")
    metronome.set_defaults(handler=run_metronome)

    analyze = sub.add_parser("analyze", help="Harmonic and interval report for WAV files")
    analyze.add_argument("files", nargs="+", help="One WAV file per source")
    analyze.set_defaults(handler=run_analyze)

    devices = sub.add_parser("devices", help="List audio devices")
    devices.set_defaults(handler=run_devices)
    return parser


def apply_args(config: Config, args) -> None:
    """Command line overrides on top of the loaded config."""
    if args.log_level:
        config.log_level = args.log_level
    if getattr(args, "reference", None):
        config.tuner.reference_frequency = args.reference
    if getattr(args, "naming", None):
        config.tuner.note_naming_system = args.naming
    if getattr(args, "method", None):
        config.tuner.pitch_method = PitchMethod[args.method.upper()]
    if getattr(args, "freeze_when_stable", False):
        config.tuner.stable_display = StableDisplay.FREEZE_AT_ZERO
    if getattr(args, "device", None) is not None:
        config.pipeline.device_index = args.device
    if getattr(args, "bpm", None):
        config.metronome.bpm = args.bpm
    if getattr(args, "time_signature", None):
        config.metronome.time_signature = args.time_signature


def run_app(args) -> int:
    config = load_config()
    apply_args(config, args)
    set_log_level(config.log_level)
    try:
        validate_config(config)
    except TunebenchError as e:
        log_event("ERROR", "Config", "Invalid settings", error=e)
        return 2
    if args.save_config:
        save_config(config)
    try:
        return args.handler(config, args)
    except TunebenchError as e:
        log_event("ERROR", "Tunebench", "Aborted", error=e)
        return 1


def main() -> None:
    args = build_parser().parse_args()

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = run_app(args)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = run_app(args)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
