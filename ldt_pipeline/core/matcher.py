"""
Owner matcher: maps a (BSNR, LANR) pair to an internal owner.
"""

from ldt_pipeline.core.models.owner import Owner
from ldt_pipeline.owners.directory import OwnerDirectory


class OwnerMatcher:
    """
    Exact (bsnr, lanr) lookup against an owner directory.

    A missing identifier or an unknown pair yields None; the message is then
    stored unassigned. Directory failures (StoreFailure) propagate.
    """

    def __init__(self, directory: OwnerDirectory):
        self.directory = directory

    def match(self, bsnr: str | None, lanr: str | None) -> Owner | None:
        if not bsnr or not lanr:
            return None
        return self.directory.lookup_owner(bsnr, lanr)
