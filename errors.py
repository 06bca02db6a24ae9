"""Exception types shared by the sampler, the decision machine and the ledger."""


class TransientNetworkError(Exception):
    """A market or risk call failed in transport; the tick is skipped and retried on schedule."""


class InvariantViolation(Exception):
    """Internal state would break a single-slot or ledger invariant; the current step is dropped."""
