"""
Checkout request models
"""
from typing import Optional
from pydantic import BaseModel, Field


class CardDetails(BaseModel):
    number: str
    exp_month: int
    exp_year: int
    cvc: str


class CheckoutRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    email: Optional[str] = None
    card_number: Optional[str] = Field(default=None, alias="cardNumber")
    expiry: Optional[str] = None
    cvc: Optional[str] = None

    model_config = {"populate_by_name": True}

    @property
    def has_card_details(self) -> bool:
        return any([self.card_number, self.expiry, self.cvc])

    def card_details(self) -> CardDetails:
        """
        Parse the raw card fields.

        Raises:
            ValueError: If any field is missing or the expiry is not MM/YY or MM/YYYY
        """
        if not (self.card_number and self.expiry and self.cvc):
            raise ValueError("Card number, expiry and CVC are all required")

        number = self.card_number.replace(" ", "").replace("-", "")
        if not number.isdigit() or not 12 <= len(number) <= 19:
            raise ValueError("Invalid card number")

        cvc = self.cvc.strip()
        if not cvc.isdigit() or len(cvc) not in (3, 4):
            raise ValueError("Invalid CVC")

        parts = self.expiry.replace(" ", "").split("/")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError("Expiry must be in MM/YY format")
        exp_month = int(parts[0])
        exp_year = int(parts[1])
        if exp_year < 100:
            exp_year += 2000
        if not 1 <= exp_month <= 12:
            raise ValueError("Invalid expiry month")

        return CardDetails(number=number, exp_month=exp_month, exp_year=exp_year, cvc=cvc)
