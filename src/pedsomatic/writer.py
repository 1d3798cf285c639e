from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pysam

from .models import PositionCall

logger = logging.getLogger(__name__)

STRICT_SOMATIC = "STRICT_SOMATIC"

# Per-somatic-sample FORMAT fields, keyed by the names used in PositionCall.somatic.
SOMATIC_FIELDS: Tuple[Tuple[str, str, str], ...] = (
    ("frequency", "SF", "Frequency of a somatic variation (%)."),
    ("priority", "PRI", "Somatic priority, larger numbers indicate more support for somatic variation in sample."),
    ("p_mutated", "MP", "Probability of a somatic variation, determined by the somatic classifier."),
    ("p_not_mutated", "UMP", "Probability of no somatic variation, determined by the somatic classifier."),
)
BAYES_FIELD = ("bayes", "BAYES", "Probability of a somatic variation, from the model probability and Bayes' rule.")
FDR_FIELD = ("fdr", "FDR", "False discovery rate at a threshold set to the model probability of this record.")


def _code_genotype(call: str, alleles: Sequence[str]) -> Tuple[Optional[int], ...]:
    if call in ("./.", ""):
        return (None, None)
    index = {a: i for i, a in enumerate(alleles)}
    ref = alleles[0]
    coded: List[Optional[int]] = []
    for token in call.split("/"):
        if token in index:
            coded.append(index[token])
        elif ref.startswith(token):
            # short reference from a base context, described by the longer indel reference
            coded.append(0)
        else:
            coded.append(None)
    return tuple(coded)


class SomaticVcfWriter:
    """Write position calls as VCF; the header (column schema) is fixed at construction."""

    def __init__(
        self,
        path: str | Path,
        *,
        samples: Sequence[str],
        contigs: Sequence[str],
        somatic_samples: Sequence[str],
        include_bayes: bool = False,
        include_fdr: bool = False,
        source: str = "pedsomatic",
    ) -> None:
        self.path = Path(path)
        self.samples = list(samples)
        self.somatic_samples = set(somatic_samples)
        self.fields = list(SOMATIC_FIELDS)
        if include_bayes:
            self.fields.append(BAYES_FIELD)
        if include_fdr:
            self.fields.append(FDR_FIELD)

        header = pysam.VariantHeader()
        header.add_meta("fileformat", "VCFv4.2")
        header.add_meta("source", source)
        for contig in contigs:
            header.contigs.add(contig)
        header.filters.add(
            STRICT_SOMATIC,
            None,
            None,
            "The site is not a strict somatic candidate. Strict candidates are not detected in the parents "
            "and only poorly in the matched germline.",
        )
        header.info.add("INDEL", 0, "Flag", "Indicates that the variation is an indel.")
        header.info.add("BIOMART_COORDS", 1, "String", "Coordinates formatted for use with IGV.")
        header.formats.add("GT", 1, "String", "Genotype")
        header.formats.add("BC", 1, "String", "Base counts in format A=?,T=?,C=?,G=?,N=?.")
        header.formats.add("GB", 1, "Integer", "Number of bases that pass base filters in this sample.")
        header.formats.add("FB", 1, "Integer", "Number of bases that failed base filters in this sample.")
        header.formats.add("ZYG", 1, "String", "Zygosity")
        for _, key, description in self.fields:
            header.formats.add(key, 1, "Float", description)
        for s in self.samples:
            header.add_sample(s)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        mode = "wz" if self.path.suffix == ".gz" else "w"
        self._vcf = pysam.VariantFile(str(self.path), mode, header=header)
        self.records_written = 0

    def write(self, call: PositionCall) -> None:
        alts = tuple(a for a in call.alts if a != call.ref)
        alleles = (call.ref,) + alts
        rec = self._vcf.new_record(
            contig=call.chrom,
            start=call.pos0,
            stop=call.pos0 + max(1, len(call.ref)),
            alleles=alleles,
            id=".",
            filter="PASS" if call.strict_pass else STRICT_SOMATIC,
        )
        pos1 = call.pos0 + 1
        rec.info["BIOMART_COORDS"] = f"{call.chrom}:{pos1}-{pos1}"
        if call.is_indel:
            rec.info["INDEL"] = True

        for i, name in enumerate(self.samples):
            sample = rec.samples[name]
            sample["GT"] = _code_genotype(call.genotypes[i], alleles)
            if call.base_counts[i]:
                sample["BC"] = call.base_counts[i]
            sample["GB"] = int(call.good_bases[i])
            sample["FB"] = int(call.failed_bases[i])
            sample["ZYG"] = call.zygosity[i]
            values: Dict[str, float] = call.somatic.get(i, {})
            if name in self.somatic_samples:
                for attr, key, _ in self.fields:
                    if attr in values and values[attr] is not None:
                        sample[key] = float(values[attr])

        self._vcf.write(rec)
        self.records_written += 1

    def close(self) -> None:
        self._vcf.close()

    def __enter__(self) -> "SomaticVcfWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
