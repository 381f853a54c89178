from beanie import Document
from pydantic import Field


class CreditPackage(Document):
    name: str
    credits: int = Field(gt=0)
    bonus_credits: int = 0
    price: float = 0.0
    is_active: bool = True

    @property
    def total_credits(self) -> int:
        return self.credits + (self.bonus_credits or 0)

    class Settings:
        name = "credit_packages"
