# ==================================== EXCEPTIONS ==================================== #

class DysbiosisError(ValueError):
    """Base class for errors raised by the dysbiosis scoring core."""


class InvalidInputError(DysbiosisError):
    """Feature table is malformed: too few samples, negative or missing values."""


class InsufficientGroupSizeError(DysbiosisError):
    """A reference group has no members, so its centroid is undefined."""


class LabelMismatchError(DysbiosisError):
    """A control/case label does not match the group assignment."""


class DegenerateLabelsError(DysbiosisError):
    """All samples share one true label; discrimination metrics are undefined."""


class NumericDegeneracyError(DysbiosisError):
    """A sample row cannot be log-transformed (zero after pseudocount substitution)."""
