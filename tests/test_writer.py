import pysam
import pytest

from pedsomatic.models import PositionCall
from pedsomatic.writer import STRICT_SOMATIC, SomaticVcfWriter

SAMPLES = ["S1", "S2", "S3", "S4"]


def _call(**overrides) -> PositionCall:
    fields = dict(
        chrom="chr1",
        pos0=99,
        ref="G",
        alts=("A",),
        is_indel=False,
        strict_pass=True,
        genotypes=("G/G", "G/G", "A/A", "G/A"),
        base_counts=("G=20", "G=20", "A=20", "G=19,A=1"),
        good_bases=(20, 20, 20, 20),
        failed_bases=(0, 0, 1, 0),
        zygosity=("homozygous", "homozygous", "homozygous", "heterozygous"),
        somatic={2: {"frequency": 100.0, "priority": 39.0, "p_mutated": 0.999, "p_not_mutated": 0.001}},
    )
    fields.update(overrides)
    return PositionCall(**fields)


def test_write_and_read_back(tmp_path):
    path = tmp_path / "out" / "somatic.vcf.gz"
    with SomaticVcfWriter(path, samples=SAMPLES, contigs=["chr1", "chr2"], somatic_samples=["S3"]) as writer:
        writer.write(_call())
        writer.write(_call(pos0=150, strict_pass=False))
    assert writer.records_written == 2

    with pysam.VariantFile(str(path)) as vcf:
        assert list(vcf.header.samples) == SAMPLES
        assert STRICT_SOMATIC in vcf.header.filters
        assert "BAYES" not in vcf.header.formats
        records = list(vcf)

    first, second = records
    assert (first.chrom, first.pos, first.ref, first.alts) == ("chr1", 100, "G", ("A",))
    assert list(first.filter) == ["PASS"]
    assert list(second.filter) == [STRICT_SOMATIC]
    assert first.info["BIOMART_COORDS"] == "chr1:100-100"
    assert "INDEL" not in first.info

    s3 = first.samples["S3"]
    assert s3["GT"] == (1, 1)
    assert s3["BC"] == "A=20"
    assert s3["FB"] == 1
    assert s3["ZYG"] == "homozygous"
    assert s3["SF"] == pytest.approx(100.0)
    assert s3["PRI"] == pytest.approx(39.0)
    assert s3["MP"] == pytest.approx(0.999, rel=1e-5)
    assert first.samples["S4"]["GT"] == (0, 1)
    assert first.samples["S1"]["SF"] is None


def test_indel_and_calibrated_fields(tmp_path):
    path = tmp_path / "indel.vcf"
    call = _call(
        ref="ACT",
        alts=("A",),
        is_indel=True,
        genotypes=("ACT/ACT", "./.", "ACT/A", "ACT/ACT"),
        base_counts=("ACT=30", "", "ACT=20,A=10", "ACT=25"),
        somatic={2: {"frequency": 33.3, "priority": 12.0, "p_mutated": 0.995, "p_not_mutated": 0.005,
                     "bayes": 1e-4, "fdr": 0.02}},
    )
    with SomaticVcfWriter(
        path,
        samples=SAMPLES,
        contigs=["chr1"],
        somatic_samples=["S3"],
        include_bayes=True,
        include_fdr=True,
    ) as writer:
        writer.write(call)

    with pysam.VariantFile(str(path)) as vcf:
        rec = next(iter(vcf))
    assert rec.info["INDEL"] is True
    assert rec.ref == "ACT"
    assert rec.samples["S3"]["GT"] == (0, 1)
    assert rec.samples["S2"]["GT"] == (None, None)
    assert rec.samples["S3"]["BAYES"] == pytest.approx(1e-4, rel=1e-5)
    assert rec.samples["S3"]["FDR"] == pytest.approx(0.02, rel=1e-5)
