# errors.py
# Setup/configuration-time failures raised by the synapse engine.
# The per-tick advance path never raises; everything here fires before the first tick
# or while the topology is being mutated between ticks.

from __future__ import annotations


class SynapseEngineError(RuntimeError):
    """Base class for engine failures."""


class CapacityExceededError(SynapseEngineError):
    """A source neuron already holds max_synapses_per_neuron live synapses."""

    def __init__(self, neuron: int, capacity: int):
        super().__init__(f"neuron {neuron} already holds {capacity} synapses (capacity reached)")
        self.neuron = neuron
        self.capacity = capacity


class InvalidDelayError(SynapseEngineError, ValueError):
    """Configured delay does not fit in the delay queue window."""

    def __init__(self, total_delay: int, queue_length: int):
        super().__init__(
            f"total_delay={total_delay} ticks does not fit a delay queue of length {queue_length}"
        )
        self.total_delay = total_delay
        self.queue_length = queue_length


class StaleDispatchHandleError(SynapseEngineError):
    """Advance/notify used a dispatch table that is missing or from an older device epoch."""


class DoubleScheduleError(SynapseEngineError):
    """A spike was scheduled into a delay-queue slot that is already pending."""

    def __init__(self, synapse_ids):
        ids = [int(i) for i in synapse_ids]
        super().__init__(f"spike already pending in the target slot for synapse(s) {ids}")
        self.synapse_ids = ids
