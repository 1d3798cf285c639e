"""Reader for per-position base-count evidence.

The upstream base-counting pipeline writes one line per (position, sample)::

    chrom  pos0  sample  reference  failed  slots

``slots`` is a comma-separated list of ``GENOTYPE:COUNT[:FLAGS]`` where FLAGS is
any combination of ``R`` (reference genotype), ``I`` (indel) and ``O`` (the
catch-all slot). Lines of one position are contiguous and positions come in
genomic order.

Samples do not necessarily report the same genotypes at a position, so the reader
aligns all samples on a shared slot layout (first-seen order). Slot ``i`` then
means the same genotype in every sample.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .models import GenotypeSlot, PositionEvidence, SampleEvidence
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

EVIDENCE_COLUMNS = ["chrom", "pos0", "sample", "reference", "failed", "slots"]

_FLAG_CHARS = {"R", "I", "O"}


class EvidenceFormatError(ValueError):
    """Raised for malformed or unsorted evidence input."""


def parse_slots(text: str) -> List[GenotypeSlot]:
    slots: List[GenotypeSlot] = []
    text = text.strip()
    if not text or text == ".":
        return slots
    for token in text.split(","):
        parts = token.split(":")
        if len(parts) not in (2, 3) or not parts[0]:
            raise EvidenceFormatError(f"Malformed genotype slot '{token}' (expected GENOTYPE:COUNT[:FLAGS])")
        try:
            count = int(parts[1])
        except ValueError:
            raise EvidenceFormatError(f"Non-integer count in genotype slot '{token}'") from None
        if count < 0:
            raise EvidenceFormatError(f"Negative count in genotype slot '{token}'")
        flags = set(parts[2]) if len(parts) == 3 else set()
        unknown = flags - _FLAG_CHARS
        if unknown:
            raise EvidenceFormatError(f"Unknown slot flag(s) {sorted(unknown)} in '{token}'")
        slots.append(
            GenotypeSlot(
                genotype=parts[0],
                count=count,
                is_indel="I" in flags,
                is_reference="R" in flags,
                is_other="O" in flags,
            )
        )
    return slots


def format_slots(slots: Sequence[GenotypeSlot]) -> str:
    tokens = []
    for s in slots:
        flags = ("R" if s.is_reference else "") + ("I" if s.is_indel else "") + ("O" if s.is_other else "")
        tokens.append(f"{s.genotype}:{s.count}" + (f":{flags}" if flags else ""))
    return ",".join(tokens) if tokens else "."


def _split_line(line: str, lineno: int) -> Tuple[str, int, str, str, int, str]:
    fields = line.rstrip("\n").split("\t")
    if len(fields) != len(EVIDENCE_COLUMNS):
        raise EvidenceFormatError(
            f"Line {lineno}: expected {len(EVIDENCE_COLUMNS)} tab-separated columns, found {len(fields)}"
        )
    chrom, pos0, sample, reference, failed, slots = fields
    try:
        return chrom, int(pos0), sample, reference, int(failed), slots
    except ValueError:
        raise EvidenceFormatError(f"Line {lineno}: pos0 and failed must be integers") from None


def _iter_rows(path: str | Path) -> Iterator[Tuple[int, Tuple[str, int, str, str, int, str]]]:
    with open_textmaybe_gzip(path, "rt") as fh:
        header = fh.readline().rstrip("\n").split("\t")
        if header != EVIDENCE_COLUMNS:
            raise EvidenceFormatError(
                f"Evidence header must be: {' '.join(EVIDENCE_COLUMNS)} (found: {' '.join(header)})"
            )
        for lineno, line in enumerate(fh, start=2):
            if not line.strip() or line.startswith("#"):
                continue
            yield lineno, _split_line(line, lineno)


def scan_evidence(path: str | Path) -> Tuple[List[str], List[str]]:
    """Return (samples, contigs) in first-seen order."""
    samples: List[str] = []
    contigs: List[str] = []
    seen_samples = set()
    seen_contigs = set()
    for _, (chrom, _pos0, sample, _ref, _failed, _slots) in _iter_rows(path):
        if sample not in seen_samples:
            seen_samples.add(sample)
            samples.append(sample)
        if chrom not in seen_contigs:
            seen_contigs.add(chrom)
            contigs.append(chrom)
    return samples, contigs


def align_samples(
    per_sample: Dict[int, Tuple[str, int, List[GenotypeSlot]]],
    num_samples: int,
) -> Tuple[SampleEvidence, ...]:
    """Project every sample onto the union of genotype slots observed at the position."""
    layout: List[GenotypeSlot] = []
    key_to_slot: Dict[Tuple[str, bool, bool], int] = {}
    for sample_index in sorted(per_sample):
        for s in per_sample[sample_index][2]:
            key = (s.genotype, s.is_indel, s.is_other)
            if key not in key_to_slot:
                key_to_slot[key] = len(layout)
                layout.append(s)

    default_reference = ""
    if per_sample:
        default_reference = per_sample[min(per_sample)][0]

    out: List[SampleEvidence] = []
    for sample_index in range(num_samples):
        counts = [0] * len(layout)
        if sample_index in per_sample:
            reference, failed, slots = per_sample[sample_index]
            for s in slots:
                counts[key_to_slot[(s.genotype, s.is_indel, s.is_other)]] += s.count
        else:
            reference, failed = default_reference, 0
        aligned = tuple(
            GenotypeSlot(
                genotype=proto.genotype,
                count=c,
                is_indel=proto.is_indel,
                is_reference=proto.is_reference,
                is_other=proto.is_other,
            )
            for proto, c in zip(layout, counts)
        )
        out.append(
            SampleEvidence(
                sample_index=sample_index,
                reference_genotype=reference,
                slots=aligned,
                failed_count=failed,
            )
        )
    return tuple(out)


def iter_positions(path: str | Path, samples: Sequence[str]) -> Iterator[PositionEvidence]:
    """Yield one PositionEvidence per position, in file (genomic) order."""
    sample_to_index = {s: i for i, s in enumerate(samples)}
    contig_index: Dict[str, int] = {}

    current: Optional[Tuple[str, int]] = None
    per_sample: Dict[int, Tuple[str, int, List[GenotypeSlot]]] = {}

    def _flush() -> PositionEvidence:
        assert current is not None
        chrom, pos0 = current
        return PositionEvidence(
            chrom=chrom,
            pos0=pos0,
            reference_index=contig_index[chrom],
            samples=align_samples(per_sample, len(samples)),
        )

    for lineno, (chrom, pos0, sample, reference, failed, slots_text) in _iter_rows(path):
        if sample not in sample_to_index:
            raise EvidenceFormatError(f"Line {lineno}: unknown sample '{sample}'")
        key = (chrom, pos0)
        if key != current:
            if current is not None:
                yield _flush()
                prev_chrom, prev_pos0 = current
                if chrom == prev_chrom and pos0 < prev_pos0:
                    raise EvidenceFormatError(
                        f"Line {lineno}: positions are not sorted ({chrom}:{pos0} after {prev_chrom}:{prev_pos0})"
                    )
                if chrom != prev_chrom and chrom in contig_index:
                    raise EvidenceFormatError(f"Line {lineno}: contig '{chrom}' is not contiguous in the evidence file")
            if chrom not in contig_index:
                contig_index[chrom] = len(contig_index)
            current = key
            per_sample = {}
        idx = sample_to_index[sample]
        if idx in per_sample:
            raise EvidenceFormatError(f"Line {lineno}: duplicate evidence for sample '{sample}' at {chrom}:{pos0}")
        if failed < 0:
            raise EvidenceFormatError(f"Line {lineno}: negative failed-base count")
        per_sample[idx] = (reference, failed, parse_slots(slots_text))

    if current is not None:
        yield _flush()


def load_matched_reads(path: Optional[str | Path], samples: Sequence[str]) -> List[int]:
    """Load per-sample matched-read totals; samples without a value get 1."""
    totals = [1] * len(samples)
    if path is None:
        return totals
    index = {s: i for i, s in enumerate(samples)}
    with open_textmaybe_gzip(path, "rt") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip() or line.startswith("#"):
                continue
            fields = line.rstrip("\n").split("\t")
            if len(fields) < 2:
                raise EvidenceFormatError(f"{path}:{lineno}: expected 'sample<TAB>matched_reads'")
            sample, value = fields[0], fields[1]
            if lineno == 1 and not value.strip().isdigit():
                # header line
                continue
            if sample not in index:
                logger.warning("Matched-read count given for unknown sample '%s'; ignoring.", sample)
                continue
            # put a minimum of one read to prevent divisions by zero
            totals[index[sample]] = max(1, int(value))
    missing = [s for s, t in zip(samples, totals) if t == 1]
    if missing:
        logger.info("No matched-read total for %d sample(s); using 1: %s", len(missing), ", ".join(missing))
    return totals
