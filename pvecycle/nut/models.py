"""
Data models for NUT (Network UPS Tools) readings.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UPSData(BaseModel):
    """
    A reading of UPS variables.

    Values NUT could not supply, or supplied in an unusable form, become
    None rather than zero.
    """

    model_config = ConfigDict(populate_by_name=True)

    battery_charge: float | None = Field(None, alias="battery.charge")

    @field_validator("battery_charge", mode="before")
    @classmethod
    def _percentage_or_none(cls, value):
        if value is None or isinstance(value, bool):
            return None
        try:
            charge = float(str(value).strip())
        except ValueError:
            return None
        if charge != charge or not 0 <= charge <= 100:
            return None
        return charge
