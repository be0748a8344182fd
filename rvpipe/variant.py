import enum

from rvpipe.predictor import (
    DisabledPredictor,
    BtbPredictor,
    TwoBitPredictor,
    GsharePredictor,
)

class Variant(enum.IntEnum):
    """Microarchitecture variants. The integer value is the variant id the
    CPU reports on its `variant_id` output."""
    NO_FORWARD = 0
    FORWARD = 1
    BTB = 2
    TWO_BIT = 3
    GSHARE = 4

    @staticmethod
    def resolve(value):
        """Turns a Variant, integer id, or name (any case) into a Variant.
        Raises ValueError for anything else."""
        if isinstance(value, Variant):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace('-', '_')
            if key.isdigit():
                return Variant.resolve(int(key))
            try:
                return Variant[key]
            except KeyError:
                raise ValueError(f"unknown variant name {value!r}") from None
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return Variant(value)
            except ValueError:
                raise ValueError(f"unknown variant id {value}") from None
        raise ValueError(f"can't interpret {value!r} as a variant")

    @property
    def forwarding(self):
        return self is not Variant.NO_FORWARD

    @property
    def predicts(self):
        return self in (Variant.BTB, Variant.TWO_BIT, Variant.GSHARE)

    def predictor(self, *, entries = None):
        """Builds the branch predictor this variant uses. `entries` overrides
        the predictor's default table size."""
        kw = {} if entries is None else {'entries': entries}
        if self is Variant.BTB:
            return BtbPredictor(**kw)
        if self is Variant.TWO_BIT:
            return TwoBitPredictor(**kw)
        if self is Variant.GSHARE:
            return GsharePredictor(**kw)
        return DisabledPredictor()
