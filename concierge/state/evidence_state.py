from typing import List, Optional

from pydantic import BaseModel, Field


class HotelEvidence(BaseModel):
    hotel_code: Optional[str] = None
    hotel_name: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None


class TransferEvidence(BaseModel):
    id: Optional[str] = None
    transfer_type: Optional[str] = None
    vehicle_name: Optional[str] = None
    one_way: Optional[float] = None
    return_price: Optional[float] = None
    currency: Optional[str] = None


class FlightEvidence(BaseModel):
    id: str = ""
    total_price: Optional[float] = None
    currency: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_date: Optional[str] = None
    return_date: Optional[str] = None


class ExcursionEvidence(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    adult_price: Optional[float] = None
    child_price: Optional[float] = None
    currency: Optional[str] = None


class InsuranceEvidence(BaseModel):
    total_premium: Optional[float] = None
    currency: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    days: Optional[int] = None
    territory_code: Optional[str] = None
    risk_amount: Optional[float] = None
    risk_currency: Optional[str] = None
    traveler_count: Optional[int] = None


class PriceEvidenceLedger(BaseModel):
    """
    Canonical priced facts taken from successful tool results of one turn.

    Append-only and never shown to the user. The price audit consults this
    ledger and nothing else; duplicates are kept because matching tolerates
    them.
    """

    hotels: List[HotelEvidence] = Field(default_factory=list)
    transfers: List[TransferEvidence] = Field(default_factory=list)
    flights: List[FlightEvidence] = Field(default_factory=list)
    excursions: List[ExcursionEvidence] = Field(default_factory=list)
    insurances: List[InsuranceEvidence] = Field(default_factory=list)

    def size(self) -> int:
        return (
            len(self.hotels)
            + len(self.transfers)
            + len(self.flights)
            + len(self.excursions)
            + len(self.insurances)
        )
