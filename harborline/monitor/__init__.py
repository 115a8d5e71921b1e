"""Terminal rendering of pipeline reports and run ledgers.

Modules
-------
renderer
    ``ReportRenderer`` turns reports, plans, probe results and ledger
    entries into Rich renderables.
"""

from harborline.monitor.renderer import ReportRenderer

__all__ = ["ReportRenderer"]
