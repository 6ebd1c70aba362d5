from pharmacy.models.user import User
from pharmacy.models.drug import Drug
from pharmacy.models.sale import Sale, SaleCounter

__all__ = ["User", "Drug", "Sale", "SaleCounter"]
