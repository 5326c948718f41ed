"""Models package."""

from .scenario import Scenario
from .share_link import ShareLink, ShareLinkCounter
from .report import Report
