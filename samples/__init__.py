"""canonical sample files: create under a flavor, then check the read-back"""

from samples._sample import TEST_VAL_42, canonical_value
from samples.sample_0 import Sample0
from samples.sample_1 import Sample1
from samples.sample_2 import Sample2

SAMPLES = (Sample0(), Sample1(), Sample2())

NUM_SAMPLES = len(SAMPLES)


def create_nc_sample_0(iosystem, iotype, filename):
    return SAMPLES[0].create(iosystem, iotype, filename)


def check_nc_sample_0(iosystem, iotype, filename):
    SAMPLES[0].check(iosystem, iotype, filename)


def create_nc_sample_1(iosystem, iotype, filename, iodesc):
    return SAMPLES[1].create(iosystem, iotype, filename, iodesc)


def check_nc_sample_1(iosystem, iotype, filename, iodesc):
    SAMPLES[1].check(iosystem, iotype, filename, iodesc)


def create_nc_sample_2(iosystem, iotype, filename, iodesc):
    return SAMPLES[2].create(iosystem, iotype, filename, iodesc)


def check_nc_sample_2(iosystem, iotype, filename, iodesc):
    SAMPLES[2].check(iosystem, iotype, filename, iodesc)


def _get(sample):
    if not 0 <= sample < NUM_SAMPLES:
        raise ValueError(f"no sample {sample}, valid ones are 0..{NUM_SAMPLES - 1}")
    return SAMPLES[sample]


def create_nc_sample(sample, iosystem, iotype, filename, iodesc=None):
    return _get(sample).create(iosystem, iotype, filename, iodesc)


def check_nc_sample(sample, iosystem, iotype, filename, iodesc=None):
    _get(sample).check(iosystem, iotype, filename, iodesc)
