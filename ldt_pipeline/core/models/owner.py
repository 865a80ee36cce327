"""
Owner model: the internal user a (BSNR, LANR) pair resolves to.
"""

from pydantic import BaseModel, Field


class Owner(BaseModel):
    """
    Internal owner of lab results, keyed uniquely by (bsnr, lanr).

    Attributes:
        user_id: Owning user
        tenant_id: Tenant the user belongs to
        bsnr: Facility number registered for the user
        lanr: Physician number registered for the user
    """

    user_id: str = Field(..., min_length=1)
    tenant_id: str | None = None
    bsnr: str | None = Field(None, pattern=r"^\d{8}$")
    lanr: str | None = Field(None, pattern=r"^\d{7,8}$")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "user_id": "user-0042",
                "tenant_id": "tenant-potsdam",
                "bsnr": "93860200",
                "lanr": "72720053",
            }
        }
