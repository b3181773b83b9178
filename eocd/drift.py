"""
Change detection on the ensemble's 0/1 error signal.
"""

from abc import ABC, abstractmethod
from enum import Enum

from river.drift.binary import DDM


class DriftLevel(Enum):
    IN_CONTROL = "in-control"
    WARNING = "warning"
    OUT_OF_CONTROL = "change"


class ChangeDetector(ABC):
    """Consumes a correctness signal (0.0 correct, 1.0 mistake)."""

    @abstractmethod
    def input(self, signal):
        pass

    @abstractmethod
    def has_changed(self):
        pass

    @abstractmethod
    def in_warning_zone(self):
        pass

    @abstractmethod
    def reset_learning(self):
        pass

    def level(self):
        if self.has_changed():
            return DriftLevel.OUT_OF_CONTROL
        if self.in_warning_zone():
            return DriftLevel.WARNING
        return DriftLevel.IN_CONTROL


class RiverChangeDetector(ChangeDetector):
    """
    Adapter for river binary drift detectors (DDM by default).

    Detectors without a warning zone (e.g. ADWIN) simply never warn.
    """

    def __init__(self, detector=None):
        self.template = detector if detector is not None else DDM()
        self.detector = self.template.clone()

    def input(self, signal):
        self.detector.update(bool(signal >= 0.5))

    def has_changed(self):
        return bool(self.detector.drift_detected)

    def in_warning_zone(self):
        return bool(getattr(self.detector, "warning_detected", False))

    def reset_learning(self):
        self.detector = self.template.clone()

    def __repr__(self):
        return f"RiverChangeDetector({self.template.__class__.__name__})"
