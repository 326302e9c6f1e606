import math

NOTE_NAMES = {
    'en': ('C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B'),
    'solfege': ('Do', 'Do#', 'Re', 'Re#', 'Mi', 'Fa', 'Fa#', 'Sol', 'Sol#', 'La', 'La#', 'Si'),
    'de': ('C', 'Cis', 'D', 'Dis', 'E', 'F', 'Fis', 'G', 'Gis', 'A', 'Ais', 'H'),
    'jp': ('ハ', '嬰ハ', 'ニ', '嬰ニ', 'ホ', 'ヘ', '嬰ヘ', 'ト', '嬰ト', 'イ', '嬰イ', 'ロ'),
}

A4_MIDI = 69


def midi_from_frequency(freq: float, reference: float = 440.0) -> int:
    """Nearest MIDI note number, with `reference` Hz as A4."""
    if freq <= 0 or reference <= 0:
        raise ValueError("Frequencies must be positive")
    return int(round(12.0 * math.log2(freq / reference))) + A4_MIDI


def frequency_from_midi(midi: int, reference: float = 440.0) -> float:
    return reference * 2.0 ** ((midi - A4_MIDI) / 12.0)


def cents_offset(freq: float, reference: float = 440.0) -> tuple[int, float]:
    """Return (nearest midi note, signed cents of `freq` from that note)."""
    midi = midi_from_frequency(freq, reference)
    cents = 1200.0 * math.log2(freq / frequency_from_midi(midi, reference))
    return midi, cents


def pitch_class(midi: int, system: str = 'en') -> str:
    names = NOTE_NAMES.get(system, NOTE_NAMES['en'])
    return names[midi % 12]


def note_octave(midi: int) -> int:
    return midi // 12 - 1


def note_name(midi: int, system: str = 'en') -> str:
    """'A4', 'La4', 'H3'... (octave numbering puts middle C at 4)."""
    return f"{pitch_class(midi, system)}{note_octave(midi)}"
