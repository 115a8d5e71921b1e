"""Deployment verification."""

from harborline.probe.verification import VerificationProbe

__all__ = ["VerificationProbe"]
