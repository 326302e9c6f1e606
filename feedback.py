"""
tunebench - Feedback report
Turns a SessionAnalysis into plain-language remarks about each source's tone
and about how the sources sit together.
"""

from dataclasses import dataclass, field
from typing import Optional

from frequency_utils import cents_offset, note_octave, pitch_class
from input_slots import SessionAnalysis
from interval_analyzer import Consonance

REPORT_REFERENCE_HZ = 440.0

CONSONANCE_REMARKS = {
    Consonance.BEATING: "Nearly the same pitch; expect audible beating.",
    Consonance.TENSE: "A close, tense interval.",
    Consonance.MILDLY_TENSE: "A slightly tense interval.",
    Consonance.CONSONANT: "A fifth apart; a well-blended, consonant pairing.",
    Consonance.VERY_CONSONANT: "An octave apart; very consonant.",
}


@dataclass(frozen=True)
class NoteInfo:
    note: str
    octave: int
    cents: int
    frequency: float

    @property
    def label(self) -> str:
        return f"{self.note}{self.octave}"


def frequency_to_note(frequency: float, reference: float = REPORT_REFERENCE_HZ,
                      system: str = 'en') -> NoteInfo:
    midi, cents = cents_offset(frequency, reference)
    return NoteInfo(note=pitch_class(midi, system), octave=note_octave(midi),
                    cents=int(round(cents)), frequency=frequency)


def distortion_remark(thd: float) -> str:
    if thd > 0.1:
        return "Heavy distortion: lower the input level or check the connection."
    if thd > 0.05:
        return "Moderate distortion gives a warm tone."
    return "Clean tone."


def balance_remark(balance: float) -> str:
    if balance > 0.7:
        return "Harmonics are well balanced: a rich, full tone."
    if balance > 0.4:
        return "Harmonic balance is typical."
    return "Few or uneven harmonics; consider adjusting EQ."


def odd_even_remark(ratio: float) -> Optional[str]:
    if ratio > 2.0:
        return "Odd harmonics dominate (hollow, reedy colour)."
    if ratio < 0.5:
        return "Even harmonics dominate (bright, clear colour)."
    return None


def register_remark(fundamental: float) -> Optional[str]:
    if fundamental < 80:
        return "Low end is emphasized; check bass boost or low-cut settings."
    if fundamental > 1000:
        return "High end is emphasized; consider a treble cut or high-pass filter."
    return None


def overlap_remark(overlap: float) -> str:
    if overlap > 0.7:
        return "Harmonics of the sources overlap heavily; the mix may sound muddy."
    if overlap > 0.4:
        return "Some harmonics overlap, within an acceptable range."
    return "Little harmonic overlap; the sources stay clear of each other."


@dataclass
class SourceFeedback:
    index: int
    has_pitch: bool
    note: Optional[NoteInfo] = None
    thd: float = 0.0
    balance: float = 0.0
    odd_even: float = 1.0
    remarks: list = field(default_factory=list)


@dataclass
class FeedbackReport:
    sources: list = field(default_factory=list)
    relation_remarks: list = field(default_factory=list)
    overlap: Optional[float] = None

    def render_text(self) -> str:
        lines = ["Analysis feedback"]
        for source in self.sources:
            if not source.has_pitch:
                lines.append(f"- Input {source.index + 1}: no pitch detected")
                continue
            note = source.note
            cents = f", {note.cents:+d} cents" if note.cents else ""
            lines.append(
                f"- Input {source.index + 1}: {note.frequency:.0f} Hz ({note.label}{cents}), "
                f"THD {source.thd * 100:.2f}%")
            lines.extend(f"    {remark}" for remark in source.remarks)
        if self.relation_remarks or self.overlap is not None:
            lines.append("- Across inputs:")
            lines.extend(f"    {remark}" for remark in self.relation_remarks)
            if self.overlap is not None:
                lines.append(f"    {overlap_remark(self.overlap)}")
        return "\n".join(lines)


def build_feedback(session: SessionAnalysis, system: str = 'en') -> FeedbackReport:
    report = FeedbackReport()
    for slot in session.slots:
        if slot.report is None:
            report.sources.append(SourceFeedback(index=slot.index, has_pitch=False))
            continue
        summary = slot.report
        source = SourceFeedback(
            index=slot.index,
            has_pitch=True,
            note=frequency_to_note(slot.pitch.frequency, system=system),
            thd=summary.thd,
            balance=summary.balance,
            odd_even=summary.odd_even,
        )
        source.remarks.append(distortion_remark(summary.thd))
        source.remarks.append(balance_remark(summary.balance))
        for remark in (odd_even_remark(summary.odd_even), register_remark(slot.pitch.frequency)):
            if remark:
                source.remarks.append(remark)
        report.sources.append(source)

    pitched = [source for source in report.sources if source.has_pitch]
    if len(pitched) > 1:
        for relation in session.relations.relations:
            if not relation.interval.matched:
                continue
            text = (f"Inputs {relation.source_a + 1} and {relation.source_b + 1}: "
                    f"{relation.interval.name} (ratio {relation.ratio:.3f}).")
            extra = CONSONANCE_REMARKS.get(relation.consonance)
            report.relation_remarks.append(f"{text} {extra}" if extra else text)
        report.overlap = session.relations.overlap_ratio
    return report
